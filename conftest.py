"""
Fixtures compartidas para los tests.

Cada test corre contra una base SQLite en memoria nueva. El engine usa
StaticPool (una sola conexión compartida con el TestClient) y la receta de
pysqlite para que los SAVEPOINT funcionen.
"""
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("DEFAULT_TIMEZONE", "America/Argentina/Buenos_Aires")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.database.database import Base, get_db
from app.main import app
from app.modules.auth.models import User, UserCompany
from app.modules.company.models import Company
from app.modules.consumptions.models import StaffConsumption, SettlementStatus
from app.modules.operating_config.models import OperatingConfigOverride
from app.modules.pdv.models import PDV
from app.modules.pos.models import (
    CashRegister, POSTransaction, TransactionStatus, TransactionType, OffRegisterStatus
)


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )

    @event.listens_for(test_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        # pysqlite: dejar que SQLAlchemy emita BEGIN (necesario para SAVEPOINT)
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ===== FACTORIES =====

@pytest.fixture
def sample_company(db_session):
    company = Company(name="Almacén Central", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture
def make_user(db_session, sample_company):
    def _make_user(role: str = "owner", company: Company = None):
        company = company or sample_company
        user = User(email=f"{role}-{uuid4().hex[:8]}@caja.test", full_name=f"Usuario {role}", is_active=True)
        db_session.add(user)
        db_session.flush()
        db_session.add(UserCompany(user_id=user.id, company_id=company.id, role=role, is_active=True))
        db_session.commit()
        return user
    return _make_user


@pytest.fixture
def sample_user(make_user):
    return make_user("owner")


@pytest.fixture
def make_pdv(db_session, sample_company):
    def _make_pdv(name: str = None, company: Company = None, is_active: bool = True):
        company = company or sample_company
        pdv = PDV(tenant_id=company.id, name=name or f"PDV {uuid4().hex[:6]}", is_active=is_active)
        db_session.add(pdv)
        db_session.commit()
        return pdv
    return _make_pdv


@pytest.fixture
def sample_pdv(make_pdv):
    return make_pdv("Sucursal Centro")


@pytest.fixture
def make_register(db_session):
    def _make_register(pdv: PDV, is_open: bool = False, opening_float=Decimal("0"),
                       opened_at: datetime = None, is_virtual: bool = False):
        register = CashRegister(
            tenant_id=pdv.tenant_id,
            pdv_id=pdv.id,
            name="Caja Principal",
            is_virtual=is_virtual,
            is_active=True,
            is_open=is_open,
            opening_float=opening_float if is_open else Decimal("0"),
            opened_at=(opened_at or datetime.now(timezone.utc) - timedelta(hours=1)) if is_open else None
        )
        db_session.add(register)
        db_session.commit()
        return register
    return _make_register


@pytest.fixture
def make_transaction(db_session):
    def _make_transaction(register: CashRegister, total, payment_method_name: str = "efectivo",
                          confirmed_at: datetime = None, off_register: bool = False,
                          off_register_status: str = None, status: str = TransactionStatus.CONFIRMED.value):
        transaction = POSTransaction(
            tenant_id=register.tenant_id,
            pdv_id=register.pdv_id,
            cash_register_id=register.id,
            transaction_type=TransactionType.SALE.value,
            status=status,
            subtotal=Decimal(str(total)),
            total=Decimal(str(total)),
            payment_method_name=payment_method_name,
            off_register=off_register,
            off_register_status=off_register_status or (OffRegisterStatus.PENDING.value if off_register else None),
            confirmed_at=confirmed_at or datetime.now(timezone.utc)
        )
        db_session.add(transaction)
        db_session.commit()
        return transaction
    return _make_transaction


@pytest.fixture
def make_consumption(db_session, sample_user):
    def _make_consumption(pdv: PDV, sale_total, cost_total, user: User = None,
                          status: str = SettlementStatus.PENDING.value, created_at: datetime = None):
        consumption = StaffConsumption(
            tenant_id=pdv.tenant_id,
            pdv_id=pdv.id,
            user_id=(user or sample_user).id,
            items=[{"name": "Café", "quantity": "1", "subtotal_sale": str(sale_total)}],
            sale_total=Decimal(str(sale_total)),
            cost_total=Decimal(str(cost_total)),
            settlement_status=status
        )
        if created_at is not None:
            consumption.created_at = created_at
        db_session.add(consumption)
        db_session.commit()
        return consumption
    return _make_consumption


@pytest.fixture
def set_operating_config(db_session):
    """Guarda un override crudo (tenant si pdv es None, si no del PDV)."""
    def _set(tenant_id, config, pdv_id=None):
        override = db_session.query(OperatingConfigOverride).filter(
            OperatingConfigOverride.tenant_id == tenant_id,
            OperatingConfigOverride.pdv_id.is_(None) if pdv_id is None else OperatingConfigOverride.pdv_id == pdv_id
        ).first()
        if override is None:
            override = OperatingConfigOverride(tenant_id=tenant_id, pdv_id=pdv_id, config=config)
            db_session.add(override)
        else:
            override.config = config
        db_session.commit()
        return override
    return _set


@pytest.fixture
def auth_headers(sample_company):
    """Headers con un JWT de acceso válido y la empresa seleccionada."""
    def _headers(user: User, company: Company = None):
        company = company or sample_company
        token = jwt.encode(
            {
                "sub": str(user.id),
                "type": "access",
                "exp": datetime.now(timezone.utc) + timedelta(minutes=30),
            },
            settings.APP_SECRET_STRING,
            algorithm=settings.ALGORITHM
        )
        return {"Authorization": f"Bearer {token}", "X-Company-ID": str(company.id)}
    return _headers
