"""
Metadata tables.

Tables:
- documents: one row per uploaded file, unique per (owner_id, content_hash)
- query_history: append-only audit trail of answered questions
"""

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("owner_id", "content_hash", name="uq_documents_owner_hash"),
    )

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    filename = Column(String(1024), nullable=False)
    file_type = Column(String(32), nullable=False)
    file_size = Column(Integer, nullable=False)
    content_hash = Column(String(64), nullable=False)  # SHA-256 hex
    storage_key = Column(String(2048), nullable=False)
    chunk_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)


class QueryHistoryRow(Base):
    __tablename__ = "query_history"
    __table_args__ = (
        Index("ix_query_history_owner_created", "owner_id", "created_at"),
    )

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(255), nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    sources = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)
