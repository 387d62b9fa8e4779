from sqlmodel import SQLModel, Field
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4


class CleanerTierStatus(SQLModel, table=True):
    """
    Caché derivada del nivel del limpiador.
    Siempre se puede recalcular a partir del conteo y la configuración activa.
    """
    __tablename__ = "cleaner_tier_status"
    id: Optional[UUID] = Field(
        default_factory=uuid4, primary_key=True, unique=True)
    worker_id: UUID = Field(unique=True, index=True)
    tier_level: str
    preferred_home_count: int = 0
    bonus_percent: float = 0  # Porcentaje literal
    faster_payouts: bool = False
    payout_hours: Optional[int] = None
    early_access: bool = False
    early_access_minutes: Optional[int] = None
    config_version: Optional[int] = None  # None = valores por defecto
    last_calculated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), nullable=False)


class CleanerPerkStatus(SQLModel):
    tier_level: str
    preferred_home_count: int
    next_tier: Optional[str] = None
    homes_needed_for_next_tier: int = 0
    tier_benefits: list[str] = []
