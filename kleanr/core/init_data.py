import logging

from sqlmodel import Session, select

from kleanr.core.db import create_all_tables, engine
from kleanr.core.logging_config import setup_logging
from kleanr.models.cancellation import CancellationPolicy
from kleanr.models.tier_config import TierConfigVersion
from kleanr.services.config_store_service import (
    default_cancellation_policy,
    publish_cancellation_policy,
    publish_tier_config,
)
from kleanr.services.tier_service import DEFAULT_TIER_THRESHOLDS

logger = logging.getLogger(__name__)


def init_tier_config(session: Session):
    exists = session.exec(
        select(TierConfigVersion).where(TierConfigVersion.is_active == True)  # noqa: E712
    ).first()
    if not exists:
        publish_tier_config(session, DEFAULT_TIER_THRESHOLDS,
                            created_by="system", note="Default tiers")


def init_cancellation_policy(session: Session):
    exists = session.exec(
        select(CancellationPolicy).where(CancellationPolicy.is_active == True)  # noqa: E712
    ).first()
    if not exists:
        publish_cancellation_policy(session, default_cancellation_policy(),
                                    created_by="system", note="Default policy")


def init_data(bind=None):
    """Crea las tablas y carga la configuración inicial si no existe."""
    bind = bind or engine
    create_all_tables(bind)
    with Session(bind) as session:
        init_tier_config(session)
        init_cancellation_policy(session)
    logger.info("Initial data loaded")


if __name__ == "__main__":
    setup_logging()
    init_data()
