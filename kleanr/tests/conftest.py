import pytest
from datetime import datetime, timezone
from uuid import UUID, uuid4
from sqlmodel import SQLModel, Session, create_engine

import kleanr.models  # noqa: F401
from kleanr.core.init_data import init_data
from kleanr.models.job_assignment import JobAssignment, JobAssignmentStatus
from kleanr.models.pending_payout import TransferResult

OWNER_ID = UUID("00000000-0000-0000-0000-000000000001")

# Lunes 8 de enero de 2024; el próximo viernes de pago es el 19
EARNED_AT = datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def engine(tmp_path):
    """Crea una base de datos sqlite nueva para cada test"""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session(engine):
    """Proporciona una sesión de base de datos para cada test"""
    with Session(engine) as session:
        yield session


@pytest.fixture(scope="function")
def other_session(engine):
    """Segunda sesión sobre la misma base, para simular procesos concurrentes"""
    with Session(engine) as session:
        yield session


@pytest.fixture(scope="function")
def seeded_session(engine, session):
    """Sesión con la configuración de niveles y cancelación por defecto"""
    init_data(engine)
    return session


@pytest.fixture
def make_assignment(session):
    def _make(**overrides) -> JobAssignment:
        data = dict(
            appointment_id=uuid4(),
            worker_id=uuid4(),
            owner_id=OWNER_ID,
            location_id=uuid4(),
            pay_type="hourly",
            rate_value=2000,
            status=JobAssignmentStatus.COMPLETED,
            job_price=15000,
            worker_count=1,
            base_duration_hours=2,
        )
        data.update(overrides)
        assignment = JobAssignment(**data)
        session.add(assignment)
        session.commit()
        session.refresh(assignment)
        return assignment
    return _make


class FakeTransferGateway:
    """Colaborador de transferencias de prueba"""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def transfer(self, worker_id, amount, payout_ids):
        self.calls.append((worker_id, amount, list(payout_ids)))
        if self.error:
            raise self.error
        if self.result:
            return self.result
        return TransferResult(success=True, transfer_id=f"tr_{len(self.calls)}")


@pytest.fixture
def gateway():
    return FakeTransferGateway()


@pytest.fixture
def gateway_factory():
    return FakeTransferGateway
