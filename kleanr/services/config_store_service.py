import logging
from typing import Callable, List, Optional, Type

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from kleanr.core.config import settings
from kleanr.models.cancellation import CancellationPolicy, CancellationPolicyCreate
from kleanr.models.tier_config import TierConfigVersion, TierThreshold, TierThresholdCreate
from kleanr.utils.errors import ConcurrencyConflict, ConfigurationMissing, InputValidationError

logger = logging.getLogger(__name__)


def _next_version(session: Session, model: Type) -> int:
    current = session.exec(select(func.max(model.version))).one()
    return (current or 0) + 1


def activate_new_version(
    session: Session,
    model: Type,
    row,
    add_children: Optional[Callable[[object], None]] = None
):
    """
    Inserta una nueva versión activa y desactiva la anterior en una sola
    transacción. Las versiones existentes nunca se modifican salvo `is_active`.
    """
    try:
        session.query(model).filter(model.is_active == True).update(  # noqa: E712
            {"is_active": False}, synchronize_session=False)
        row.version = _next_version(session, model)
        row.is_active = True
        session.add(row)
        session.flush()
        if add_children:
            add_children(row)
        session.commit()
        session.refresh(row)
    except IntegrityError as e:
        session.rollback()
        raise ConcurrencyConflict(
            f"Another {model.__tablename__} version was published concurrently") from e
    except Exception:
        session.rollback()
        raise
    logger.info("Published %s version %s", model.__tablename__, row.version)
    return row


# ---------------------------------------------------------------------------
# Umbrales de niveles
# ---------------------------------------------------------------------------

def validate_tier_thresholds(thresholds: List[TierThresholdCreate]):
    if not thresholds:
        raise InputValidationError("At least one tier is required")
    names = [t.tier for t in thresholds]
    if len(set(names)) != len(names):
        raise InputValidationError("Tier names must be unique")
    minimums = [t.min_count for t in thresholds]
    if len(set(minimums)) != len(minimums):
        raise InputValidationError("Tier minimum counts must be unique")
    for t in thresholds:
        if t.min_count < 0:
            raise InputValidationError(
                f"Tier '{t.tier}' has a negative minimum count")
        if not 0 <= t.bonus_percent <= 100:
            raise InputValidationError(
                f"Tier '{t.tier}' bonus percent must be between 0 and 100")
        if t.payout_hours is not None and t.payout_hours <= 0:
            raise InputValidationError(
                f"Tier '{t.tier}' payout hours must be positive")
        if t.early_access_minutes is not None and t.early_access_minutes < 0:
            raise InputValidationError(
                f"Tier '{t.tier}' early access minutes must be non-negative")


def publish_tier_config(
    session: Session,
    thresholds: List[TierThresholdCreate],
    created_by: Optional[str] = None,
    note: Optional[str] = None
) -> TierConfigVersion:
    """Publica una nueva versión de umbrales y la deja como la activa."""
    validate_tier_thresholds(thresholds)

    def add_thresholds(version: TierConfigVersion):
        for threshold in thresholds:
            session.add(TierThreshold(
                **threshold.model_dump(), config_version_id=version.id))

    return activate_new_version(
        session,
        TierConfigVersion,
        TierConfigVersion(version=0, created_by=created_by, note=note),
        add_thresholds,
    )


def load_active_tier_config(session: Session) -> tuple[TierConfigVersion, List[TierThreshold]]:
    version = session.exec(
        select(TierConfigVersion).where(TierConfigVersion.is_active == True)  # noqa: E712
    ).first()
    if not version:
        raise ConfigurationMissing("No active tier configuration")
    thresholds = session.exec(
        select(TierThreshold)
        .where(TierThreshold.config_version_id == version.id)
        .order_by(TierThreshold.min_count)
    ).all()
    if not thresholds:
        raise ConfigurationMissing(
            f"Tier configuration version {version.version} has no tiers")
    return version, list(thresholds)


def get_active_tier_config(session: Session) -> tuple[Optional[int], List[TierThreshold]]:
    """
    Obtiene (número de versión, umbrales) de la configuración activa.
    Sin configuración activa devuelve (None, []) y el resolvedor usa los
    beneficios por defecto.
    """
    try:
        version, thresholds = load_active_tier_config(session)
    except ConfigurationMissing as e:
        logger.warning("%s, falling back to zero-perk defaults", e.message)
        return None, []
    return version.version, thresholds


def list_tier_config_versions(session: Session) -> List[TierConfigVersion]:
    return list(session.exec(
        select(TierConfigVersion).order_by(TierConfigVersion.version)).all())


def get_tier_thresholds_for_version(session: Session, version: int) -> List[TierThreshold]:
    return list(session.exec(
        select(TierThreshold)
        .join(TierConfigVersion, TierConfigVersion.id == TierThreshold.config_version_id)
        .where(TierConfigVersion.version == version)
        .order_by(TierThreshold.min_count)
    ).all())


# ---------------------------------------------------------------------------
# Política de cancelación
# ---------------------------------------------------------------------------

def default_cancellation_policy() -> CancellationPolicyCreate:
    return CancellationPolicyCreate(
        window_days=settings.DEFAULT_CANCELLATION_WINDOW_DAYS,
        partial_refund_rate=settings.DEFAULT_PARTIAL_REFUND_RATE,
        fee_amount=settings.DEFAULT_CANCELLATION_FEE,
    )


def publish_cancellation_policy(
    session: Session,
    policy: CancellationPolicyCreate,
    created_by: Optional[str] = None,
    note: Optional[str] = None
) -> CancellationPolicy:
    if policy.window_days < 0:
        raise InputValidationError("Cancellation window must be non-negative")
    if not 0 <= policy.partial_refund_rate <= 1:
        raise InputValidationError(
            "Partial refund rate must be a fraction between 0 and 1")
    if policy.fee_amount < 0:
        raise InputValidationError("Cancellation fee must be non-negative")

    return activate_new_version(
        session,
        CancellationPolicy,
        CancellationPolicy(**policy.model_dump(), version=0,
                           created_by=created_by, note=note),
    )


def get_active_cancellation_policy(session: Session) -> CancellationPolicyCreate:
    """Política activa, o la política por defecto de la configuración."""
    policy = session.exec(
        select(CancellationPolicy).where(CancellationPolicy.is_active == True)  # noqa: E712
    ).first()
    if not policy:
        logger.warning(
            "No active cancellation policy, falling back to defaults")
        return default_cancellation_policy()
    return CancellationPolicyCreate(
        window_days=policy.window_days,
        partial_refund_rate=policy.partial_refund_rate,
        fee_amount=policy.fee_amount,
    )


def list_cancellation_policy_versions(session: Session) -> List[CancellationPolicy]:
    return list(session.exec(
        select(CancellationPolicy).order_by(CancellationPolicy.version)).all())
