"""
Fixtures compartidas: SQLite en memoria, cliente HTTP y datos base.

Las variables de entorno se fijan antes de importar la aplicación para que
Settings y el engine tomen la base de pruebas.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("SECONDARY_EFFECT_RETRY_ENABLED", "false")

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from settlement.common.mixins import utc_now
from settlement.database.database import Base, get_db
from settlement.main import app
from settlement.modules.auth.utils import create_access_token
from settlement.modules.cash.models import CashBox, CashPeriodStatus, Seller
from settlement.modules.cash.service import current_business_date
from settlement.modules.payments.models import (
    Payment, PaymentGatewayConfig, PaymentMethodType, PaymentProvider, PaymentStatus
)
from settlement.modules.sales.models import Sale, SaleStatus
from settlement.modules.stores.models import Store


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def store(db_session):
    store = Store(name="Store Default", slug="store-default")
    db_session.add(store)
    db_session.commit()
    db_session.refresh(store)
    return store


@pytest.fixture
def tenant_id(store):
    return store.id


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def auth_headers(tenant_id, user_id):
    token = create_access_token({"sub": str(user_id), "tenant_id": str(tenant_id), "user_role": "owner"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_sale(db_session, tenant_id):
    def _make_sale(total="1000.00", status=SaleStatus.CONFIRMED):
        sale = Sale(tenant_id=tenant_id, status=status, total_amount=Decimal(total))
        db_session.add(sale)
        db_session.commit()
        db_session.refresh(sale)
        return sale
    return _make_sale


@pytest.fixture
def sale(make_sale):
    return make_sale()


@pytest.fixture
def open_box(db_session, tenant_id, user_id):
    box = CashBox(
        tenant_id=tenant_id,
        business_date=current_business_date(),
        status=CashPeriodStatus.OPEN,
        opening_balance=Decimal("0"),
        opened_by=user_id,
    )
    db_session.add(box)
    db_session.commit()
    db_session.refresh(box)
    return box


@pytest.fixture
def seller(db_session, tenant_id):
    seller = Seller(tenant_id=tenant_id, name="Laura", is_active=True)
    db_session.add(seller)
    db_session.commit()
    db_session.refresh(seller)
    return seller


@pytest.fixture
def make_payment(db_session, tenant_id):
    """Pago insertado directamente, sin pasar por el ledger"""
    def _make_payment(sale, amount="500.00", status=PaymentStatus.PENDING, provider=PaymentProvider.MANUAL,
                      method=PaymentMethodType.TRANSFER, reference=None, external_reference=None,
                      gateway_metadata=None, seller_id=None):
        payment = Payment(
            tenant_id=tenant_id,
            sale_id=sale.id,
            amount=Decimal(amount),
            status=status,
            provider=provider,
            method=method,
            reference=reference,
            external_reference=external_reference,
            gateway_metadata=gateway_metadata,
            seller_id=seller_id,
            idempotency_key=uuid4().hex,
        )
        if status == PaymentStatus.CONFIRMED:
            payment.confirmed_at = utc_now()
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)
        return payment
    return _make_payment


@pytest.fixture
def make_gateway_config(db_session, tenant_id):
    def _make_gateway_config(provider, credentials=None, config=None, enabled=True):
        gateway = PaymentGatewayConfig(
            tenant_id=tenant_id,
            provider=provider,
            enabled=enabled,
            credentials=credentials,
            config=config,
        )
        db_session.add(gateway)
        db_session.commit()
        db_session.refresh(gateway)
        return gateway
    return _make_gateway_config
