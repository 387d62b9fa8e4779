from pydantic_settings import BaseSettings, SettingsConfigDict
from datetime import date
from functools import lru_cache


class Settings(BaseSettings):
    # Configuración de la aplicación
    APP_NAME: str = "Kleanr Finance"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Configuración de la base de datos
    DATABASE_URL: str = "sqlite:///./kleanr.db"

    # Comisión de la plataforma (fracción 0..1 del precio del trabajo)
    PLATFORM_FEE_RATE: float = 0.10
    MULTI_CLEANER_PLATFORM_FEE_RATE: float = 0.13

    # Pagos
    DEFAULT_PAYOUT_HOURS: int = 48
    DEFAULT_EARLY_ACCESS_MINUTES: int = 30
    # Viernes de pago de referencia; se paga cada dos viernes a partir de él
    PAYOUT_BIWEEKLY_ANCHOR: date = date(2024, 1, 5)

    # Política de cancelación por defecto (si no hay versión activa)
    DEFAULT_CANCELLATION_WINDOW_DAYS: int = 7
    DEFAULT_PARTIAL_REFUND_RATE: float = 0.5  # fracción 0..1
    DEFAULT_CANCELLATION_FEE: int = 1000  # centavos

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True
    )


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()
