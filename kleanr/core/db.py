from sqlmodel import Session, create_engine, SQLModel
from .config import settings

# Importar todos los modelos para registrar las tablas en el metadata
import kleanr.models  # noqa: F401

engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG)


def create_all_tables(bind=None):
    """Crea todas las tablas en la base de datos"""
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
