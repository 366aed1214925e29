"""
Fixtures compartidas por los tests de los módulos.

Los tests corren contra una base SQLite en un archivo temporal (varios hilos
la comparten en los tests de concurrencia) y con el gateway falso de SUNAT.
"""
import os
import shutil
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="comprobantes-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["ENVIRONMENT"] = "test"
os.environ["SUNAT_GATEWAY"] = "fake"
os.environ["ALLOCATION_RETRY_BACKOFF"] = "0.01"

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from app.main import app
from app.database.database import Base, SessionLocal, engine
from app.modules.comprobantes.sequence import SequenceAllocator
from app.modules.sales.models import Customer, Sale
from app.modules.sunat import reset_gateway, set_gateway
from app.modules.sunat.fake import FakeSunatGateway


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    shutil.rmtree(_TEST_DB_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def reset_database():
    """Esquema limpio y series registradas para cada test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        SequenceAllocator(db).ensure_series()
    finally:
        db.close()
    yield


@pytest.fixture(autouse=True)
def fake_gateway():
    gateway = FakeSunatGateway()
    set_gateway(gateway)
    yield gateway
    reset_gateway()


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sample_customer(db_session):
    customer = Customer(
        name="Distribuidora Andina S.A.C.",
        document_type="RUC",
        document_number="20512345678"
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def make_sale(db_session):
    """Crea ventas confirmadas en base de datos"""

    def _make_sale(total="118.00", customer=None, document_type=None, sale_id=None):
        sale = Sale(
            id=sale_id,
            total=Decimal(total),
            customer_id=customer.id if customer else None,
            document_type=document_type
        )
        db_session.add(sale)
        db_session.commit()
        return sale

    return _make_sale
