from sqlmodel import SQLModel, Field, UniqueConstraint
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4


class PreferredRelationship(SQLModel, table=True):
    """Vínculo explícito limpiador <-> hogar del cliente."""
    __tablename__ = "preferred_relationship"
    __table_args__ = (
        UniqueConstraint("worker_id", "location_id",
                         name="uq_preferred_worker_location"),
    )
    id: Optional[UUID] = Field(
        default_factory=uuid4, primary_key=True, unique=True)
    worker_id: UUID = Field(index=True)
    location_id: UUID = Field(index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), nullable=False)
