from sqlmodel import SQLModel, Field, Index
from pydantic import BaseModel
from enum import Enum
from datetime import date, datetime, timezone
from typing import Optional, List
from uuid import UUID, uuid4


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PayoutPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"


class PendingPayout(SQLModel, table=True):
    """
    Dinero adeudado a un trabajador por una asignación completada.
    Inmutable salvo el estado y los campos terminales.
    """
    __tablename__ = "pending_payout"
    __table_args__ = (
        Index("ix_pending_payout_status_scheduled",
              "status", "scheduled_payout_date"),
    )
    id: Optional[UUID] = Field(
        default_factory=uuid4, primary_key=True, unique=True)
    worker_id: UUID = Field(index=True)
    owner_id: UUID = Field(index=True)
    assignment_id: UUID = Field(
        foreign_key="job_assignment.id", unique=True, index=True)
    amount: int  # Centavos, incluye el bono preferido
    pay_type: str
    hours_worked: Optional[float] = None
    status: PayoutStatus = Field(default=PayoutStatus.PENDING)
    payout_priority: PayoutPriority = Field(default=PayoutPriority.NORMAL)
    expected_payout_hours: int = 48

    # Foto del nivel del trabajador al momento de crear el pago
    preferred_bonus_applied: bool = False
    preferred_bonus_percent: float = 0  # Porcentaje literal
    preferred_bonus_amount: int = 0  # Centavos tomados de la comisión
    cleaner_tier_at_payout: Optional[str] = None

    scheduled_payout_date: date
    transfer_id: Optional[str] = None
    failure_reason: Optional[str] = None
    earned_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), nullable=False)
    paid_at: Optional[datetime] = None


class TransitionMetadata(BaseModel):
    transfer_id: Optional[str] = None
    failure_reason: Optional[str] = None
    reason: Optional[str] = None  # Motivo de cancelación


class TransitionResult(BaseModel):
    success: bool
    payout: Optional[PendingPayout] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    current_status: Optional[PayoutStatus] = None


class PayoutCreationResult(BaseModel):
    created: bool
    payout: Optional[PendingPayout] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


class PayoutFilter(BaseModel):
    worker_id: Optional[UUID] = None
    owner_id: Optional[UUID] = None
    statuses: Optional[List[PayoutStatus]] = None
    due_on_or_before: Optional[date] = None
    offset: int = 0
    limit: Optional[int] = None


class PendingTotals(BaseModel):
    total_amount: int = 0
    payout_count: int = 0


class PendingEarningsSummary(BaseModel):
    worker_id: UUID
    total_pending: int
    job_count: int
    next_payout_date: date
    payouts: List[PendingPayout] = []


class WorkerPayrollGroup(BaseModel):
    worker_id: UUID
    total_amount: int
    payout_count: int
    payouts: List[PendingPayout] = []


class OwnerPayrollSummary(BaseModel):
    owner_id: UUID
    total_amount: int
    payout_count: int
    next_payout_date: date
    by_worker: List[WorkerPayrollGroup] = []


class TransferResult(BaseModel):
    """Contrato del colaborador de transferencias."""
    success: bool
    transfer_id: Optional[str] = None
    failure_reason: Optional[str] = None


class BatchRunSummary(BaseModel):
    workers: int = 0
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    total_transferred: int = 0
    failures: List[str] = []
