from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from uuid import UUID


class AppointmentListing(BaseModel):
    """Vista mínima de una cita publicada para el filtro de acceso anticipado."""
    appointment_id: UUID
    published_at: datetime
    early_access_until: Optional[datetime] = None
