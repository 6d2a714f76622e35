"""Feedloom HTTP API."""
