import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from kleanr.models.cleaner_tier_status import CleanerTierStatus
from kleanr.models.preferred_relationship import PreferredRelationship
from kleanr.services.tier_service import TierService

logger = logging.getLogger(__name__)


def add_preferred_relationship(session: Session, worker_id: UUID, location_id: UUID) -> CleanerTierStatus:
    """
    Marca al trabajador como preferido en un hogar y recalcula su nivel.
    Si el vínculo ya existe no se duplica.
    """
    exists = session.exec(
        select(PreferredRelationship).where(
            PreferredRelationship.worker_id == worker_id,
            PreferredRelationship.location_id == location_id
        )
    ).first()
    if not exists:
        session.add(PreferredRelationship(
            worker_id=worker_id, location_id=location_id))
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.info("Preferred relationship %s/%s already exists",
                        worker_id, location_id)
    return TierService(session).recalculate_tier(worker_id)


def remove_preferred_relationship(session: Session, worker_id: UUID, location_id: UUID) -> CleanerTierStatus:
    """Quita el vínculo preferido (si existe) y recalcula el nivel."""
    relationship = session.exec(
        select(PreferredRelationship).where(
            PreferredRelationship.worker_id == worker_id,
            PreferredRelationship.location_id == location_id
        )
    ).first()
    if relationship:
        session.delete(relationship)
        session.commit()
    return TierService(session).recalculate_tier(worker_id)
