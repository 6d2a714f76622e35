"""User model definition."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, generate_uuid


class User(Base, TimestampMixin):
    """
    Feed owner.

    Accounts are managed by the authentication layer; the pipeline only
    needs the id to scope feeds and items.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    email: Mapped[str | None] = mapped_column(String(255), unique=True)

    feeds = relationship("Feed", back_populates="user", cascade="all, delete-orphan")
