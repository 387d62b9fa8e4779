from sqlmodel import SQLModel, Field
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4


class UserBill(SQLModel, table=True):
    __tablename__ = "user_bill"
    id: Optional[UUID] = Field(
        default_factory=uuid4, primary_key=True, unique=True)
    user_id: UUID = Field(unique=True, index=True)
    cancellation_fee: int = 0  # Centavos
    total_due: int = 0  # Centavos
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_column_kwargs={"onupdate": lambda: datetime.now(timezone.utc)}
    )
