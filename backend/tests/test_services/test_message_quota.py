"""Tests for the free-tier message quota gate."""

from datetime import datetime, timedelta

import pytest

from settlement.billing.plans import ApplicationPlatform, SubscriptionPlan
from settlement.models.message_quota import MessageQuota
from settlement.models.subscription import Subscription
from settlement.models.user import User
from settlement.services.message_quota_service import (
    LIMITS_RESUMED_MESSAGE,
    filter_active_users,
    get_users_by_ids,
    is_paid_subscriber,
    limit_reached_message,
)

NOW = datetime(2026, 2, 10, 8, 0)
MAX = 3
RESET_HOURS = 6


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_message(self, user_id: str, text: str) -> None:
        self.sent.append((user_id, text))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def add_user(db_session, make_wallet):
    async def _add(user_id: str, plan: str | None = None) -> User:
        keypair, secret = make_wallet()
        subscriptions = []
        if plan is not None:
            subscriptions.append(
                Subscription(platform=ApplicationPlatform.BOOSTS, plan=plan, version=1)
            )
        user = User(
            id=user_id,
            wallet_public_key=str(keypair.pubkey()),
            wallet_secret=secret,
            subscriptions=subscriptions,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _add


async def _run(db_session, users, notifier, now=NOW):
    return await filter_active_users(
        db_session, users, notifier, now=now, max_messages=MAX, reset_hours=RESET_HOURS
    )


class TestIsPaidSubscriber:
    def test_free_plan_is_not_paid(self):
        user = User(
            id="1",
            subscriptions=[Subscription(platform=ApplicationPlatform.BOOSTS, plan=SubscriptionPlan.FREE)],
        )
        assert is_paid_subscriber(user) is False

    def test_paid_plan_on_other_platform_does_not_count(self):
        user = User(
            id="1",
            subscriptions=[
                Subscription(platform=ApplicationPlatform.TRENDING, plan=SubscriptionPlan.PRO)
            ],
        )
        assert is_paid_subscriber(user) is False
        assert is_paid_subscriber(user, ApplicationPlatform.TRENDING) is True

    def test_no_subscription(self):
        assert is_paid_subscriber(User(id="1", subscriptions=[])) is False

    def test_subscription_for_selects_platform(self):
        boosts = Subscription(platform=ApplicationPlatform.BOOSTS, plan=SubscriptionPlan.FREE)
        trending = Subscription(platform=ApplicationPlatform.TRENDING, plan=SubscriptionPlan.PRO)
        user = User(id="1", subscriptions=[trending, boosts])

        assert user.subscription_for(ApplicationPlatform.BOOSTS) is boosts
        assert user.subscription_for(ApplicationPlatform.TRENDING) is trending
        assert User(id="2", subscriptions=[]).subscription_for(ApplicationPlatform.BOOSTS) is None


class TestGetUsersByIds:
    async def test_request_order_without_unknown_or_repeats(self, db_session, add_user):
        first = await add_user("10")
        second = await add_user("20")

        users = await get_users_by_ids(db_session, ["20", "ghost", "10", "20"])

        assert users == [second, first]

    async def test_empty(self, db_session):
        assert await get_users_by_ids(db_session, []) == []


class TestFilterActiveUsers:
    async def test_free_user_passes_until_limit(self, db_session, add_user, notifier):
        user = await add_user("10")

        results = [await _run(db_session, [user], notifier) for _ in range(MAX)]

        assert all(result == [user] for result in results)
        quota = await db_session.get(MessageQuota, "10")
        assert quota.count == MAX
        assert notifier.sent == []

    async def test_limit_notice_sent_once(self, db_session, add_user, notifier):
        user = await add_user("10")
        for _ in range(MAX):
            await _run(db_session, [user], notifier)

        first_refusal = await _run(db_session, [user], notifier)
        second_refusal = await _run(db_session, [user], notifier, now=NOW + timedelta(hours=1))

        assert first_refusal == []
        assert second_refusal == []
        assert notifier.sent == [("10", limit_reached_message(MAX, RESET_HOURS))]
        quota = await db_session.get(MessageQuota, "10")
        assert quota.limit_notified_at == NOW

    async def test_counter_resets_after_window(self, db_session, add_user, notifier):
        user = await add_user("10")
        for _ in range(MAX + 1):
            await _run(db_session, [user], notifier)

        later = NOW + timedelta(hours=RESET_HOURS, minutes=1)
        result = await _run(db_session, [user], notifier, now=later)

        assert result == [user]
        assert notifier.sent[-1] == ("10", LIMITS_RESUMED_MESSAGE)
        quota = await db_session.get(MessageQuota, "10")
        assert quota.count == 1
        assert quota.limit_notified_at is None

    async def test_no_reset_exactly_at_window(self, db_session, add_user, notifier):
        user = await add_user("10")
        for _ in range(MAX + 1):
            await _run(db_session, [user], notifier)

        result = await _run(db_session, [user], notifier, now=NOW + timedelta(hours=RESET_HOURS))

        assert result == []

    async def test_paid_users_bypass_quota(self, db_session, add_user, notifier):
        paid = await add_user("20", plan=SubscriptionPlan.HOBBY)

        for _ in range(MAX + 2):
            assert await _run(db_session, [paid], notifier) == [paid]

        assert await db_session.get(MessageQuota, "20") is None
        assert notifier.sent == []

    async def test_mixed_batch_keeps_order(self, db_session, add_user, notifier):
        free = await add_user("10")
        paid = await add_user("20", plan=SubscriptionPlan.PRO)
        exhausted = await add_user("30")
        db_session.add(MessageQuota(user_id="30", count=MAX, limit_notified_at=None))
        await db_session.flush()

        result = await _run(db_session, [free, paid, exhausted], notifier)

        assert result == [free, paid]
        assert [user_id for user_id, _ in notifier.sent] == ["30"]
