import logging

from kleanr.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str | None = None):
    """Configura el logger raíz con el nivel definido en la configuración."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # SQLAlchemy ya controla su salida con DEBUG/echo
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
