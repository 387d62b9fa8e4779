from sqlmodel import SQLModel, Field, UniqueConstraint
from pydantic import BaseModel, ConfigDict
from datetime import datetime, timezone
from typing import Optional


class TierConfigVersion(SQLModel, table=True):
    """
    Versión de la tabla de umbrales de niveles.
    Solo una versión está activa; nunca se editan en sitio.
    """
    __tablename__ = "tier_config_version"
    id: Optional[int] = Field(default=None, primary_key=True)
    version: int = Field(unique=True, index=True)
    is_active: bool = Field(default=False, index=True)
    created_by: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), nullable=False)


class TierThresholdBase(SQLModel):
    tier: str
    min_count: int  # Número mínimo de hogares preferidos
    bonus_percent: float = 0  # Porcentaje literal (5 = 5%) sobre la comisión
    faster_payouts: bool = False
    payout_hours: Optional[int] = None
    early_access: bool = False
    early_access_minutes: Optional[int] = None


class TierThreshold(TierThresholdBase, table=True):
    __tablename__ = "tier_threshold"
    __table_args__ = (
        UniqueConstraint("config_version_id", "tier",
                         name="uq_tier_threshold_version_tier"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    config_version_id: int = Field(
        foreign_key="tier_config_version.id", index=True)


class TierThresholdCreate(TierThresholdBase):
    pass


class TierPerks(BaseModel):
    """Paquete de beneficios resuelto para un conteo de hogares preferidos."""
    model_config = ConfigDict(frozen=True)

    tier_level: str
    bonus_percent: float = 0  # Porcentaje literal
    faster_payouts: bool = False
    payout_hours: Optional[int] = None
    early_access: bool = False
    early_access_minutes: Optional[int] = None


class PayoutBonus(BaseModel):
    """Desglose del bono preferido, tomado de la comisión de la plataforma."""
    original_platform_fee: int
    bonus_amount: int
    adjusted_platform_fee: int
    adjusted_net_amount: int
    is_preferred_job: bool
    bonus_applied: bool
    bonus_percent: float = 0
    tier_level: str
    faster_payouts: bool = False
    payout_hours: int
