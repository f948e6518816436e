"""
SQLAlchemy ORM models for the relational store.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), 'postgresql')


class Base(DeclarativeBase):
    """Base class for ORM models."""


class PersonORM(Base):
    """Persistent person record."""

    __tablename__ = 'people'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_key: Mapped[str] = mapped_column(String(255), nullable=False)  # lower-cased name
    relationship: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    avatar: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint('user_id', 'name_key', name='uq_people_user_name'), )


class MemoryORM(Base):
    """Persistent memory record."""

    __tablename__ = 'memories'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    emotions: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    mood: Mapped[int] = mapped_column(Integer, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    ai_tags: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    user_tags: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    people: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    embedding: Mapped[List[float]] = mapped_column(JSONType, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    weather: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    audio_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index('ix_memories_user_created', 'user_id', 'created_at'), )


class NudgeORM(Base):
    """Persistent nudge record."""

    __tablename__ = 'nudges'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    related_people: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    related_memories: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_actioned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
