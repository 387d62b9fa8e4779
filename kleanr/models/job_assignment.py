from sqlmodel import SQLModel, Field
from enum import Enum
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4


class PayType(str, Enum):
    HOURLY = "hourly"
    FLAT_RATE = "flat_rate"
    PER_JOB = "per_job"  # Alias de flat_rate
    PERCENTAGE = "percentage"


class JobAssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class JobAssignment(SQLModel, table=True):
    """
    Asignación de un trabajador a una cita. Varias asignaciones pueden
    compartir la misma cita (trabajo con varios limpiadores).
    """
    __tablename__ = "job_assignment"
    id: Optional[UUID] = Field(
        default_factory=uuid4, primary_key=True, unique=True)
    appointment_id: UUID = Field(index=True)
    worker_id: Optional[UUID] = Field(default=None, index=True)
    owner_id: UUID = Field(index=True)
    location_id: Optional[UUID] = None
    # Se guarda como texto para poder detectar valores heredados inválidos
    pay_type: Optional[str] = None
    # Centavos por hora (hourly), centavos (flat_rate) o porcentaje literal (percentage)
    rate_value: float = 0
    is_self_assignment: bool = False
    status: JobAssignmentStatus = Field(default=JobAssignmentStatus.ASSIGNED)
    job_price: int = 0  # Precio total de la cita en centavos
    worker_count: int = 1
    base_duration_hours: float = 0
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), nullable=False)
    completed_at: Optional[datetime] = None
