from sqlmodel import SQLModel, Field
from pydantic import BaseModel
from enum import Enum
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID


class CancellationPolicyBase(SQLModel):
    window_days: int = 7
    partial_refund_rate: float = 0.5  # Fracción 0..1 del precio
    fee_amount: int = 1000  # Centavos


class CancellationPolicy(CancellationPolicyBase, table=True):
    """Versión de la política de cancelación; solo una activa."""
    __tablename__ = "cancellation_policy"
    id: Optional[int] = Field(default=None, primary_key=True)
    version: int = Field(unique=True, index=True)
    is_active: bool = Field(default=False, index=True)
    created_by: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), nullable=False)


class CancellationPolicyCreate(CancellationPolicyBase):
    pass


class CancellationInput(BaseModel):
    days_until_appointment: int
    window_days: int
    has_cleaner_assigned: bool
    has_payment_method: bool
    price: int  # Centavos
    partial_refund_rate: float  # Fracción 0..1


class CancellationDecision(BaseModel):
    is_within_fee_window: bool
    has_cleaner_assigned: bool
    will_charge_fee: bool
    refund_amount: int  # Centavos
    requires_payment_method: bool


class FeeSettlementOutcome(str, Enum):
    NONE = "none"  # No corresponde cobrar
    BLOCKED = "blocked"  # Falta método de pago
    CHARGED = "charged"
    BILLED = "billed"  # Se agregó a la cuenta pendiente del usuario


class ChargeResult(BaseModel):
    """Contrato del procesador de pagos."""
    success: bool
    charge_id: Optional[str] = None
    failure_reason: Optional[str] = None


class FeeSettlement(BaseModel):
    outcome: FeeSettlementOutcome
    fee_amount: int = 0
    charge_id: Optional[str] = None
    failure_reason: Optional[str] = None
    user_id: Optional[UUID] = None
