"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.storage import Base


class Message(Base):
    """
    A sent or received WhatsApp text message.

    Table: messages
    Unique: message_id (second insert of the same id is rejected)
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(255), unique=True, nullable=False, index=True)
    from_phone = Column(String(32), nullable=False, index=True)
    to_phone = Column(String(32), nullable=False)
    body = Column(Text, nullable=False)
    type = Column(String(16), nullable=False, index=True)  # sent | received
    timestamp = Column(DateTime, nullable=False, index=True)  # UTC, naive
    created_at = Column(DateTime, nullable=False)


class WebhookDelivery(Base):
    """Verbatim body of every POST /webhook delivery."""
    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payload = Column(Text, nullable=False)
    received_at = Column(DateTime, nullable=False)
