"""Shared test configuration and fixtures.

Database tests run against a fresh in-memory SQLite database per test (via
aiosqlite), so every test starts with empty tables. Workflow tests use the
in-memory fakes below instead of a database or an RPC node.
"""

import asyncio
from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from solders.keypair import Keypair
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import settlement.models  # noqa: F401  (registers every table on Base.metadata)
from settlement.billing.exceptions import EntitlementConflictError
from settlement.billing.plans import get_promotion_rule
from settlement.database import Base
from settlement.ledger.credentials import encrypt_secret
from settlement.ledger.ports import TransferResult
from settlement.models.subscription import Subscription
from settlement.models.user import User
from settlement.services.entitlement_store import (
    NON_STACKABLE_ALREADY_PURCHASED,
    PromotionResult,
)
from settlement.services.payments_service import PaymentsService

OPERATOR_ADDRESS = str(Keypair().pubkey())
SIGNATURE_FEE = 5_000
NOW = datetime(2026, 1, 15, 12, 0, 0)


# ---------------------------------------------------------------------------
# Database: fresh in-memory SQLite per test
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """Create an in-memory engine with all tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Wallet secrets
# ---------------------------------------------------------------------------


@pytest.fixture
def encryption_key() -> str:
    return Fernet.generate_key().decode("ascii")


@pytest.fixture
def make_wallet(encryption_key):
    """Return a factory producing (keypair, encrypted secret) pairs."""

    def _make() -> tuple[Keypair, str]:
        keypair = Keypair()
        return keypair, encrypt_secret(bytes(keypair), encryption_key)

    return _make


# ---------------------------------------------------------------------------
# In-memory collaborators for the settlement workflow
# ---------------------------------------------------------------------------


class FakeEntitlementStore:
    """Dict-backed EntitlementStore with the same version semantics as the SQL store."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.subscriptions: dict[tuple[str, str], Subscription] = {}
        self.promotions: list[tuple[str, str, int]] = []
        self.donors: set[str] = set()
        self.writes: list[tuple[str, str, str, datetime | None]] = []
        self.write_error: Exception | None = None
        self.promotion_error: Exception | None = None
        self.donation_error: Exception | None = None

    def mutation_count(self) -> int:
        return len(self.writes) + len(self.promotions) + len(self.donors)

    async def get_user_by_id(self, user_id: str) -> User | None:
        return self.users.get(user_id)

    async def get_subscription(self, user_id: str, platform: str) -> Subscription | None:
        return self.subscriptions.get((user_id, platform))

    async def write_subscription(self, user_id, plan, platform, period_end, expected_version=None):
        await asyncio.sleep(0)
        if self.write_error is not None:
            raise self.write_error

        existing = self.subscriptions.get((user_id, platform))
        current_version = existing.version if existing else None
        if current_version != expected_version:
            raise EntitlementConflictError(user_id, platform)

        subscription = Subscription(
            user_id=user_id,
            platform=platform,
            plan=plan,
            current_period_end=period_end,
            version=(expected_version or 0) + 1,
        )
        self.subscriptions[(user_id, platform)] = subscription
        self.writes.append((user_id, plan, platform, period_end))
        return subscription

    async def record_promotion_purchase(self, user_id, promotion_type, amount_lamports):
        if self.promotion_error is not None:
            raise self.promotion_error
        rule = get_promotion_rule(promotion_type)
        already_held = any(
            uid == user_id and ptype == promotion_type for uid, ptype, _ in self.promotions
        )
        if not rule.stackable and already_held:
            return PromotionResult(accepted=False, reason=NON_STACKABLE_ALREADY_PURCHASED)
        self.promotions.append((user_id, promotion_type, amount_lamports))
        return PromotionResult(accepted=True)

    async def mark_donated(self, user_id: str) -> None:
        if self.donation_error is not None:
            raise self.donation_error
        self.donors.add(user_id)


class FakeBalanceOracle:
    def __init__(self, balances: dict[str, int]) -> None:
        self.balances = balances
        self.calls: list[str] = []
        self.error: Exception | None = None

    async def get_balance(self, address: str) -> int | None:
        self.calls.append(address)
        if self.error is not None:
            raise self.error
        return self.balances.get(address)


class FakeLedger:
    """Moves lamports between entries of a shared balance dict."""

    def __init__(self, balances: dict[str, int], fee: int = SIGNATURE_FEE) -> None:
        self.balances = balances
        self.fee = fee
        self.calls: list[dict] = []
        self.confirm = True
        self.error: Exception | None = None
        self._lock = asyncio.Lock()

    async def transfer(self, from_address, to_address, amount, signer) -> TransferResult:
        self.calls.append(
            {
                "from": from_address,
                "to": to_address,
                "amount": amount,
                "signer": str(signer.pubkey()),
            }
        )
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if not self.confirm:
            return TransferResult(confirmed=False, signature="unconfirmed-sig")

        async with self._lock:
            if self.balances.get(from_address, 0) < amount + self.fee:
                return TransferResult(confirmed=False, signature="failed-sig")
            self.balances[from_address] -= amount + self.fee
            self.balances[to_address] = self.balances.get(to_address, 0) + amount
        return TransferResult(confirmed=True, signature=f"sig-{len(self.calls)}")


class FakeIncidents:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, str]] = []

    async def record(self, kind, user_id, detail) -> None:
        self.records.append((kind, user_id, detail))


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def operator_address() -> str:
    return OPERATOR_ADDRESS


@pytest.fixture
def balances() -> dict[str, int]:
    return {}


@pytest.fixture
def store() -> FakeEntitlementStore:
    return FakeEntitlementStore()


@pytest.fixture
def oracle(balances) -> FakeBalanceOracle:
    return FakeBalanceOracle(balances)


@pytest.fixture
def ledger(balances) -> FakeLedger:
    return FakeLedger(balances)


@pytest.fixture
def incidents() -> FakeIncidents:
    return FakeIncidents()


@pytest.fixture
def payments_service(
    store, oracle, ledger, incidents, encryption_key, now, operator_address
) -> PaymentsService:
    return PaymentsService(
        store=store,
        balance_oracle=oracle,
        transfer_service=ledger,
        incidents=incidents,
        operator_address=operator_address,
        signature_fee=SIGNATURE_FEE,
        encryption_key=encryption_key,
        clock=lambda: now,
    )


@pytest.fixture
def make_user(store, balances, make_wallet):
    """Register a user in the fake store with a wallet holding ``balance`` lamports."""

    def _make(user_id: str = "1001", balance: int | None = 0) -> User:
        keypair, secret = make_wallet()
        address = str(keypair.pubkey())
        user = User(id=user_id, wallet_public_key=address, wallet_secret=secret, has_donated=False)
        store.users[user_id] = user
        if balance is not None:
            balances[address] = balance
        return user

    return _make


@pytest.fixture
def give_subscription(store):
    """Put an existing subscription row in the fake store."""

    def _give(user_id: str, plan: str, platform: str, period_end: datetime | None = None) -> Subscription:
        subscription = Subscription(
            user_id=user_id,
            platform=platform,
            plan=plan,
            current_period_end=period_end,
            version=1,
        )
        store.subscriptions[(user_id, platform)] = subscription
        return subscription

    return _give
