"""Database models for the key-value progress store."""
from sqlalchemy import JSON, Column, String

from supercards.models.base import Base, TimestampMixin


class StoredValue(Base, TimestampMixin):
    """One key of the persisted progress layout."""

    __tablename__ = "stored_values"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<StoredValue({self.key})>"
