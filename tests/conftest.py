from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from helpdesk.metrics import MetricsRegistry, register_default_metrics
from helpdesk.tickets import InMemoryTicketRepository, TicketService
from helpdesk.users import Actor, InMemoryUserRepository, UserAccount, UserRole

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


USER = UserAccount(id="user-1", name="Uma User", email="uma@example.com", role=UserRole.USER)
OTHER_USER = UserAccount(id="user-2", name="Omar Other", email="omar@example.com", role=UserRole.USER)
AGENT = UserAccount(id="agent-1", name="Alex Agent", email="alex@example.com", role=UserRole.AGENT)
OTHER_AGENT = UserAccount(id="agent-2", name="Bea Agent", email="bea@example.com", role=UserRole.AGENT)
ADMIN = UserAccount(id="admin-1", name="Ada Admin", email="ada@example.com", role=UserRole.ADMIN)


def actor_for(account: UserAccount) -> Actor:
    return Actor(id=account.id, role=account.role)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def store() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository([USER, OTHER_USER, AGENT, OTHER_AGENT, ADMIN])


@pytest.fixture
def service(store, users, clock, metrics) -> TicketService:
    return TicketService(store, users, clock=clock, metrics=metrics)


@pytest.fixture
def user() -> Actor:
    return actor_for(USER)


@pytest.fixture
def other_user() -> Actor:
    return actor_for(OTHER_USER)


@pytest.fixture
def agent() -> Actor:
    return actor_for(AGENT)


@pytest.fixture
def other_agent() -> Actor:
    return actor_for(OTHER_AGENT)


@pytest.fixture
def admin() -> Actor:
    return actor_for(ADMIN)
