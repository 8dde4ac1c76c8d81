"""
Pytest configuration and shared fixtures for the storefront payments tests.

Provides an in-memory SQLite DB per test, gateway adapters built from fake
credentials, an httpx client wired to the FastAPI app, and catalog / order
fixtures.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("APP_BASE_URL", "http://localhost:3000")
os.environ.setdefault("REAPER_ENABLED", "false")

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config import SePayConfig, VNPayConfig, settings
from database import Base, get_db
from db_models import Order, OrderItem, Product
from deps import get_sepay_adapter, get_sepay_api_client, get_vnpay_adapter
from main import app
from services.gateways.sepay import SePayAdapter, SePayApiClient
from services.gateways.vnpay import VNPayAdapter, to_vnpay_amount
from utils.clock import format_vnpay_date, utcnow

# ── Test Configuration ───────────────────────────────────────────────
# Redirects must be built from this origin, never from the request host
settings.app_base_url = "http://localhost:3000"
settings.admin_api_token = "test-admin-token"
settings.cron_secret = ""

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}
CUSTOMER_ID = "user-123"
CUSTOMER_HEADERS = {"X-User-Id": CUSTOMER_ID}

VNPAY_TEST_SECRET = "TESTVNPAYSECRETKEY0123456789ABCDEF"
SEPAY_TEST_SECRET = "test-sepay-secret"


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create an in-memory SQLite database session for each test.

    Uses StaticPool to allow in-memory SQLite with async SQLAlchemy.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture(scope="function")
async def session_factory(tmp_path):
    """
    Session factory over a file-backed SQLite DB.

    Each session gets its own connection, so two sessions can race on the
    same order the way two concurrent callbacks would.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 5},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# ── Gateway Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def vnpay_config() -> VNPayConfig:
    return VNPayConfig(
        tmn_code="TESTTMN1",
        hash_secret=VNPAY_TEST_SECRET,
        url="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
        return_url="http://localhost:8000/payments/vnpay/callback",
        expire_minutes=15,
    )


@pytest.fixture
def vnpay_adapter(vnpay_config) -> VNPayAdapter:
    return VNPayAdapter(vnpay_config)


@pytest.fixture
def sepay_config() -> SePayConfig:
    return SePayConfig(
        env="sandbox",
        merchant_id="SP-TEST-MERCHANT",
        secret_key=SEPAY_TEST_SECRET,
        checkout_url="https://pay-sandbox.sepay.vn/v1/checkout/init",
        api_url="https://pgapi-sandbox.sepay.vn",
        return_url="http://localhost:8000/payments/sepay/callback",
        trust_callback_transport=True,
        timeout_seconds=2.0,
    )


@pytest.fixture
def sepay_adapter(sepay_config) -> SePayAdapter:
    return SePayAdapter(sepay_config)


@pytest.fixture
def vnpay_callback(vnpay_adapter):
    """
    Build a signed VNPay callback query for an order.

    Usage: vnpay_callback(order, response_code="00", transaction_status="00")
    Extra keyword arguments override individual vnp_* fields before signing.
    """
    def build(order, *, response_code="00", transaction_status="00", amount=None, **overrides):
        params = {
            "vnp_TmnCode": "TESTTMN1",
            "vnp_Amount": to_vnpay_amount(order.total if amount is None else amount),
            "vnp_BankCode": "NCB",
            "vnp_BankTranNo": "VNP14422574",
            "vnp_CardType": "ATM",
            "vnp_OrderInfo": f"Thanh toan don hang {order.order_number}",
            "vnp_PayDate": format_vnpay_date(utcnow()),
            "vnp_ResponseCode": response_code,
            "vnp_TransactionNo": "14422574",
            "vnp_TransactionStatus": transaction_status,
            "vnp_TxnRef": order.order_number,
        }
        params.update(overrides)
        params["vnp_SecureHashType"] = "HmacSHA512"
        params["vnp_SecureHash"] = vnpay_adapter.codec.sign(params)
        return params

    return build


# ── Client Fixture ───────────────────────────────────────────────────


@pytest_asyncio.fixture(scope="function")
async def client(db_session, vnpay_adapter, sepay_adapter, sepay_config):
    """httpx client against the app with the test DB and fake gateways."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_vnpay_adapter] = lambda: vnpay_adapter
    app.dependency_overrides[get_sepay_adapter] = lambda: sepay_adapter
    app.dependency_overrides[get_sepay_api_client] = lambda: SePayApiClient(sepay_config)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


# ── Test Data Fixtures ────────────────────────────────────────────────


@pytest.fixture
async def products(db_session: AsyncSession) -> dict[str, Product]:
    """Three catalog rows: two stocked, one unlimited."""
    rows = {
        "tee": Product(slug="basic-tee", name="Basic Tee", price=Decimal("100000"), stock_quantity=10),
        "cap": Product(slug="snapback-cap", name="Snapback Cap", price=Decimal("50000"), stock_quantity=5),
        "gift": Product(slug="gift-card", name="Gift Card", price=Decimal("200000"), stock_quantity=None),
    }
    db_session.add_all(rows.values())
    await db_session.commit()
    for p in rows.values():
        await db_session.refresh(p)
    return rows


@pytest.fixture
def make_order(db_session: AsyncSession):
    """
    Insert an order row directly (bypassing checkout), e.g. ORD-1001 for 250,000.

    lines: [(product, qty)]; stock is NOT decremented here.
    """
    async def make(
        order_number: str = "ORD-1001",
        total: Decimal = Decimal("250000"),
        *,
        lines=(),
        status: str = "PENDING",
        payment_status: str = "PENDING",
        user_id: str = CUSTOMER_ID,
        created_at=None,
        delivered_at=None,
        updated_at=None,
    ) -> Order:
        now = utcnow()
        order = Order(
            order_number=order_number,
            user_id=user_id,
            subtotal=total,
            tax=Decimal("0"),
            shipping=Decimal("0"),
            total=total,
            status=status,
            payment_status=payment_status,
            payment_metadata="[]",
            created_at=created_at or now,
            updated_at=updated_at or created_at or now,
            delivered_at=delivered_at,
            items=[
                OrderItem(
                    product_id=product.id,
                    quantity=qty,
                    unit_price=product.price,
                    total=product.price * qty,
                )
                for product, qty in lines
            ],
        )
        db_session.add(order)
        await db_session.commit()
        return order

    return make
