"""Database models for the document store.

Brands and campaigns are schemaless JSON documents kept in one table and
partitioned by collection name.
"""

from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Index, String, func
from sqlalchemy.orm import declarative_base


Base = declarative_base()

COLLECTIONS = ("brands", "campaigns")


class Document(Base):
    """One JSON document in a named collection."""

    __tablename__ = "documents"

    id = Column(String(), primary_key=True, default=lambda: uuid4().hex)
    collection = Column(String(), nullable=False)
    data = Column(JSON(), nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_documents_collection", "collection"),
    )
