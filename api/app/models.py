from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from .database import Base


class StoreDocument(Base):
    __tablename__ = "store_document"

    path = Column(String(512), primary_key=True)
    parent = Column(String(512), nullable=False)
    doc_id = Column(String(255), nullable=False)
    data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_store_document_parent", "parent"),
    )
