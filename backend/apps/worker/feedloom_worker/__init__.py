"""Feedloom background worker."""
