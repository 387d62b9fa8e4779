import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from kleanr.core.config import settings
from kleanr.models.cleaner_tier_status import CleanerPerkStatus, CleanerTierStatus
from kleanr.models.preferred_relationship import PreferredRelationship
from kleanr.models.tier_config import PayoutBonus, TierPerks, TierThresholdBase, TierThresholdCreate
from kleanr.services.config_store_service import get_active_tier_config
from kleanr.services.pay_split_service import platform_fee_for_job
from kleanr.utils.errors import InputValidationError
from kleanr.utils.rounding import percent_of

logger = logging.getLogger(__name__)

DEFAULT_TIER_LEVEL = "bronze"

# Paquete sin beneficios usado cuando no hay configuración activa
DEFAULT_PERKS = TierPerks(tier_level=DEFAULT_TIER_LEVEL)

DEFAULT_TIER_THRESHOLDS = [
    TierThresholdCreate(tier="bronze", min_count=1, bonus_percent=0),
    TierThresholdCreate(tier="silver", min_count=3, bonus_percent=3),
    TierThresholdCreate(tier="gold", min_count=6, bonus_percent=5,
                        faster_payouts=True, payout_hours=24),
    TierThresholdCreate(tier="platinum", min_count=11, bonus_percent=7,
                        faster_payouts=True, payout_hours=24,
                        early_access=True, early_access_minutes=30),
]


def _perks_from_threshold(threshold: TierThresholdBase) -> TierPerks:
    early_access_minutes = None
    if threshold.early_access:
        early_access_minutes = threshold.early_access_minutes or settings.DEFAULT_EARLY_ACCESS_MINUTES
    return TierPerks(
        tier_level=threshold.tier,
        bonus_percent=threshold.bonus_percent or 0,
        faster_payouts=threshold.faster_payouts,
        payout_hours=threshold.payout_hours if threshold.faster_payouts else None,
        early_access=threshold.early_access,
        early_access_minutes=early_access_minutes,
    )


def resolve_tier(preferred_count: int, active_config: Optional[Sequence[TierThresholdBase]]) -> TierPerks:
    """
    Resuelve el nivel y sus beneficios para un conteo de hogares preferidos.

    Se elige el nivel más alto cuyo mínimo se cumple. Si el conteo no llega
    al primer nivel se devuelve ese nivel sin beneficios. Sin configuración
    se devuelven los beneficios por defecto (ninguno).
    """
    if preferred_count is None or preferred_count < 0:
        raise InputValidationError(
            f"Preferred count must be non-negative, got {preferred_count}")
    if not active_config:
        return DEFAULT_PERKS

    ordered = sorted(active_config, key=lambda t: t.min_count)
    selected = None
    for threshold in ordered:
        if preferred_count >= threshold.min_count:
            selected = threshold
    if selected is None:
        return TierPerks(tier_level=ordered[0].tier)
    return _perks_from_threshold(selected)


def perks_from_status(status: CleanerTierStatus) -> TierPerks:
    return TierPerks(
        tier_level=status.tier_level,
        bonus_percent=status.bonus_percent,
        faster_payouts=status.faster_payouts,
        payout_hours=status.payout_hours,
        early_access=status.early_access,
        early_access_minutes=status.early_access_minutes,
    )


def describe_tier_benefits(perks: TierPerks) -> List[str]:
    benefits = []
    if perks.bonus_percent > 0:
        benefits.append(f"{perks.bonus_percent:g}% bonus on preferred jobs")
    if perks.faster_payouts:
        benefits.append(
            f"Faster payouts ({perks.payout_hours or settings.DEFAULT_PAYOUT_HOURS}h)")
    if perks.early_access:
        benefits.append("Early access to new homes")
    if not benefits:
        benefits = ["Build your reputation",
                    "Become preferred at more homes to unlock perks"]
    return benefits


def calculate_payout_bonus(
    job_price: int,
    perks: TierPerks,
    is_preferred_job: bool,
    worker_count: int = 1
) -> PayoutBonus:
    """
    Calcula el bono preferido de un trabajo.
    El bono sale de la comisión de la plataforma, no se suma al precio.
    """
    platform_fee = platform_fee_for_job(job_price, worker_count)
    bonus_applied = is_preferred_job and perks.bonus_percent > 0
    bonus_amount = percent_of(platform_fee, perks.bonus_percent) if bonus_applied else 0
    adjusted_fee = platform_fee - bonus_amount
    return PayoutBonus(
        original_platform_fee=platform_fee,
        bonus_amount=bonus_amount,
        adjusted_platform_fee=adjusted_fee,
        adjusted_net_amount=job_price - adjusted_fee,
        is_preferred_job=is_preferred_job,
        bonus_applied=bonus_applied,
        bonus_percent=perks.bonus_percent if bonus_applied else 0,
        tier_level=perks.tier_level,
        faster_payouts=perks.faster_payouts,
        payout_hours=perks.payout_hours or settings.DEFAULT_PAYOUT_HOURS,
    )


def count_preferred_relationships(session: Session, worker_id: UUID) -> int:
    return session.exec(
        select(func.count(PreferredRelationship.id))
        .where(PreferredRelationship.worker_id == worker_id)
    ).one()


def is_preferred_at_location(session: Session, worker_id: UUID, location_id: Optional[UUID]) -> bool:
    if location_id is None:
        return False
    return session.exec(
        select(PreferredRelationship).where(
            PreferredRelationship.worker_id == worker_id,
            PreferredRelationship.location_id == location_id
        )
    ).first() is not None


class TierService:
    def __init__(self, session: Session):
        self.session = session

    def get_tier_status(self, worker_id: UUID) -> Optional[CleanerTierStatus]:
        return self.session.exec(
            select(CleanerTierStatus).where(
                CleanerTierStatus.worker_id == worker_id)
        ).first()

    def get_current_perks(self, worker_id: UUID) -> TierPerks:
        """
        Beneficios actuales del trabajador según la caché de niveles.
        Si la caché se calculó con otra versión de configuración se
        recalcula; si no hay caché se derivan del conteo y la configuración
        activa.
        """
        status = self.get_tier_status(worker_id)
        version, thresholds = get_active_tier_config(self.session)
        if status and status.config_version == version:
            return perks_from_status(status)
        if status:
            # Se publicó otra versión desde el último cálculo
            return perks_from_status(self.recalculate_tier(worker_id))
        return resolve_tier(count_preferred_relationships(self.session, worker_id), thresholds)

    def _apply(self, status: CleanerTierStatus, count: int, perks: TierPerks, version: Optional[int]):
        status.tier_level = perks.tier_level
        status.preferred_home_count = count
        status.bonus_percent = perks.bonus_percent
        status.faster_payouts = perks.faster_payouts
        status.payout_hours = perks.payout_hours
        status.early_access = perks.early_access
        status.early_access_minutes = perks.early_access_minutes
        status.config_version = version
        status.last_calculated_at = datetime.now(timezone.utc)

    def recalculate_tier(self, worker_id: UUID, preferred_count: Optional[int] = None) -> CleanerTierStatus:
        """
        Recalcula y guarda el nivel del trabajador.

        Un descenso de nivel solo afecta pagos futuros: los pagos ya creados
        conservan su foto de nivel.
        """
        count = preferred_count
        if count is None:
            count = count_preferred_relationships(self.session, worker_id)
        version, thresholds = get_active_tier_config(self.session)
        perks = resolve_tier(count, thresholds)

        status = self.get_tier_status(worker_id)
        previous_tier = status.tier_level if status else None
        if not status:
            status = CleanerTierStatus(
                worker_id=worker_id, tier_level=perks.tier_level)
        self._apply(status, count, perks, version)
        self.session.add(status)
        try:
            self.session.commit()
        except IntegrityError:
            # Otro proceso creó la caché al mismo tiempo
            self.session.rollback()
            status = self.get_tier_status(worker_id)
            previous_tier = status.tier_level
            self._apply(status, count, perks, version)
            self.session.add(status)
            self.session.commit()
        self.session.refresh(status)

        if previous_tier != status.tier_level:
            logger.info("Worker %s tier changed from %s to %s (%s preferred homes)",
                        worker_id, previous_tier, status.tier_level, count)
        return status

    def recalculate_all_tiers(self) -> int:
        """Recalcula todos los trabajadores conocidos. Devuelve cuántos se procesaron."""
        worker_ids = set(self.session.exec(
            select(CleanerTierStatus.worker_id)).all())
        worker_ids.update(self.session.exec(
            select(PreferredRelationship.worker_id).distinct()).all())
        for worker_id in worker_ids:
            self.recalculate_tier(worker_id)
        return len(worker_ids)

    def get_workers_by_tier(self, tier_level: str) -> List[CleanerTierStatus]:
        return list(self.session.exec(
            select(CleanerTierStatus)
            .where(CleanerTierStatus.tier_level == tier_level)
            .order_by(CleanerTierStatus.preferred_home_count.desc())
        ).all())

    def get_cleaner_perk_status(self, worker_id: UUID) -> CleanerPerkStatus:
        """Nivel actual, siguiente nivel y beneficios para mostrar al limpiador."""
        count = count_preferred_relationships(self.session, worker_id)
        _, thresholds = get_active_tier_config(self.session)
        perks = resolve_tier(count, thresholds)

        next_threshold = None
        for threshold in sorted(thresholds, key=lambda t: t.min_count):
            if threshold.min_count > count and threshold.tier != perks.tier_level:
                next_threshold = threshold
                break

        return CleanerPerkStatus(
            tier_level=perks.tier_level,
            preferred_home_count=count,
            next_tier=next_threshold.tier if next_threshold else None,
            homes_needed_for_next_tier=next_threshold.min_count - count if next_threshold else 0,
            tier_benefits=describe_tier_benefits(perks),
        )
