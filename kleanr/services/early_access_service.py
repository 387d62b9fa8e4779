from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence
from uuid import UUID

from sqlmodel import Session

from kleanr.core.config import settings
from kleanr.models.appointment_listing import AppointmentListing
from kleanr.models.tier_config import TierThresholdBase
from kleanr.services.tier_service import TierService


def compute_early_access_until(
    published_at: datetime,
    thresholds: Optional[Sequence[TierThresholdBase]]
) -> Optional[datetime]:
    """
    Fin de la ventana de acceso anticipado de una cita recién publicada.
    Solo aplica si el nivel más alto tiene el acceso anticipado activo.
    """
    if not thresholds:
        return None
    top_tier = max(thresholds, key=lambda t: t.min_count)
    if not top_tier.early_access:
        return None
    minutes = top_tier.early_access_minutes or settings.DEFAULT_EARLY_ACCESS_MINUTES
    return published_at + timedelta(minutes=minutes)


def is_early_access_visible(
    appointment: AppointmentListing,
    requester_has_early_access: bool,
    now: datetime
) -> bool:
    """
    Indica si una cita es visible para quien consulta.

    Visible si no hay ventana, si la ventana ya terminó o si el solicitante
    tiene acceso anticipado. Se evalúa en cada consulta.
    """
    if appointment.early_access_until is None:
        return True
    if requester_has_early_access:
        return True
    return now >= appointment.early_access_until


def filter_visible(
    listings: Iterable[AppointmentListing],
    requester_has_early_access: bool,
    now: datetime
) -> List[AppointmentListing]:
    return [
        listing for listing in listings
        if is_early_access_visible(listing, requester_has_early_access, now)
    ]


def worker_has_early_access(session: Session, worker_id: UUID) -> bool:
    return TierService(session).get_current_perks(worker_id).early_access
