import os
from decimal import Decimal
from pathlib import Path

# Settings are read at import time; keep tests away from real services
_TEST_ENV = {
    "ENVIRONMENT": "test",
    "DATABASE_URL": "sqlite+aiosqlite:///./referrals-test.db",
    "SHOPIFY_STORE_DOMAIN": "",
    "SHOPIFY_ADMIN_ACCESS_TOKEN": "",
    "RESEND_API_KEY": "",
    "CODE_ISSUANCE_POLICY": "reuse",
    "REFUND_RETRY_DELAY_SECONDS": "0",
    "TRACING_ENABLED": "false",
}
for _k, _v in _TEST_ENV.items():
    os.environ[_k] = _v

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.exceptions import ShopifyAPIError, ShopifyUserError
from app.core.schema import metadata
from app.models.code import CodeOrigin, DiscountDetails
from app.models.referrer import CustomerIdentity
from app.models.settings import ReferralSettings
from app.monitoring.metrics import metrics_collector
from app.services.code_service import create_code_for_referrer
from app.services.referral_service import record_referral
from app.services.referrer_service import get_or_create_referrer
from app.services.reward_service import create_pending_reward

ORIGIN_ORDER_GID = "gid://shopify/Order/1001"


class FakeShopifyClient:
    """In-memory stand-in for ShopifyAdminClient"""

    def __init__(self):
        self.orders = {}
        self.customer_orders = {}
        self.order_totals = {}
        self.parent_transactions = {}
        self.customers = {}
        self.discounts = {}
        self.deleted_discounts = []
        self.failing_discount_deletes = set()
        self.fail_discounts = False
        self.refunds = []
        self.refund_errors = []

    async def fetch_order(self, order_id):
        if str(order_id) not in self.orders:
            raise ShopifyAPIError("Shopify API returned 404", {"status_code": 404})
        return self.orders[str(order_id)]

    async def fetch_orders_for_customer(self, customer_id, limit=10):
        return self.customer_orders.get(customer_id, [])[:limit]

    async def get_order_transaction_parent_id(self, order_gid):
        return self.parent_transactions.get(order_gid)

    async def get_order_total_amount(self, order_gid):
        return self.order_totals.get(order_gid)

    async def get_or_create_customer_by_email(self, email, first_name=None, last_name=None):
        if email in self.customers:
            return self.customers[email], False
        customer = {
            "id": str(9000 + len(self.customers)),
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
        }
        self.customers[email] = customer
        return customer, True

    async def create_discount(self, discount_input):
        if self.fail_discounts:
            raise ShopifyUserError("code: must be unique", [{"field": ["code"], "message": "must be unique"}])
        discount_id = f"gid://shopify/DiscountCodeNode/{len(self.discounts) + 1}"
        self.discounts[discount_id] = discount_input
        return discount_id

    async def update_discount(self, discount_id, discount_input):
        if self.fail_discounts:
            raise ShopifyAPIError("Shopify API returned 500", {"status_code": 500})
        self.discounts[discount_id] = discount_input
        return discount_id

    async def delete_discount(self, discount_id):
        if discount_id in self.failing_discount_deletes:
            raise ShopifyUserError("Discount does not exist", [{"message": "Discount does not exist"}])
        self.deleted_discounts.append(discount_id)
        self.discounts.pop(discount_id, None)

    async def fetch_discount_details(self, discount_ids):
        return {
            discount_id: DiscountDetails(
                id=discount_id,
                title=self.discounts[discount_id]["title"],
                percentage=Decimal(str(self.discounts[discount_id]["customerGets"]["value"]["percentage"])),
            )
            for discount_id in discount_ids
            if discount_id in self.discounts
        }

    async def create_refund(self, order_gid, amount, note, parent_transaction_id=None, gateway=None):
        self.refunds.append({
            "order_gid": order_gid,
            "amount": Decimal(amount),
            "note": note,
            "parent_transaction_id": parent_transaction_id,
            "gateway": gateway,
        })
        if self.refund_errors:
            raise self.refund_errors.pop(0)
        return {"id": f"gid://shopify/Refund/{len(self.refunds)}"}


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics_collector.reset()
    yield


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path):
    """Fresh file-backed SQLite database per test with the production schema"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'referrals.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def shopify():
    return FakeShopifyClient()


@pytest.fixture
def program():
    return ReferralSettings(discount_fraction=Decimal("0.1"), cashback_amount=Decimal("20"))


@pytest_asyncio.fixture
async def referrer(db):
    created, _ = await get_or_create_referrer(db, CustomerIdentity(
        shopify_customer_id="501",
        email="ada@example.com",
        first_name="Ada",
        last_name="Lovelace",
    ))
    await db.commit()
    return created


@pytest_asyncio.fixture
async def origin_code(db, referrer, program):
    """Code minted from a paid order, so settlements have an order to refund"""
    code = await create_code_for_referrer(db, referrer.id, program, CodeOrigin(
        order_id="1001",
        order_gid=ORIGIN_ORDER_GID,
        product_id="7001",
        product_title="Pottery Workshop",
        quantity=1,
    ))
    await db.commit()
    return code


@pytest.fixture
def seed_reward(db):
    """Referral of `order_id` through `code` with a pending reward of `amount`"""
    async def seed(code, order_id: str, amount: str, currency: str = "EUR"):
        recorded = await record_referral(db, code.referrer_id, order_id, code_id=code.id)
        reward = await create_pending_reward(
            db,
            referrer_id=code.referrer_id,
            referral_id=recorded.referral.id,
            program=ReferralSettings(cashback_amount=Decimal(amount)),
            currency=currency,
        )
        await db.commit()
        return reward
    return seed
