"""
Document Model: One row per ``<collection>/<key>`` path.

The bot treats its storage as a hierarchical key-value store (products,
purchases, verification codes, screenshots, stock log, users). Each child
of a collection is one row; its fields live in the JSON ``data`` column.
"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from stockbot.db.base import Base


class Document(Base):
    """
    A single child document.

    Schema:
        id: insertion sequence, used as the child-added cursor
        collection: first path segment (e.g. "products")
        key: second path segment (push key, bot code, screenshot id, chat id)
        data: JSON object holding the document fields
    """
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("collection", "key", name="uq_document_path"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    collection = Column(String(128), nullable=False, index=True)
    key = Column(String(128), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.key}"

    def __repr__(self):
        return f"<Document {self.path}>"
