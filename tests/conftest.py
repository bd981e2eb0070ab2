"""
Shared pytest fixtures: in-memory database, recording dispatcher and
seeding helpers for tenants, agents and tickets.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from supportdesk.alerting.application import IAlertingPolicyProvider
from supportdesk.alerting.domain import AlertingPolicy
from supportdesk.config import (
    BusinessModel,
    SupportRole,
    TicketCategory,
    TicketPriority,
    TicketStatus,
)
from supportdesk.core import Actor
from supportdesk.infrastructure.database import Base
from supportdesk.shared.application.notifications import (
    ChannelNotification,
    INotificationDispatcher,
)
from supportdesk.support.application import (
    AgentDirectoryService,
    AgentProfileDTO,
    ISupportPolicyProvider,
    TicketService,
)
from supportdesk.support.domain import SupportConfig, SupportPolicy
from supportdesk.support.infrastructure import (
    SQLAlchemyAgentRepository,
    SQLAlchemySupportConfigRepository,
    SQLAlchemySupportUnitOfWork,
    TicketModel,
)

import supportdesk.alerting.infrastructure.models  # noqa: F401
import supportdesk.support.infrastructure.models  # noqa: F401


BM = BusinessModel.B2B_SALE
TENANT = "acme"


class RecordingDispatcher(INotificationDispatcher):
    """Keeps every notification in memory."""

    def __init__(self, email_enabled: bool = True):
        self._email_enabled = email_enabled
        self.channel_messages: List[Tuple[str, ChannelNotification]] = []
        self.emails: List[Tuple[str, str, str]] = []
        self.webhooks: List[Tuple[str, Dict[str, Any]]] = []

    @property
    def email_enabled(self) -> bool:
        return self._email_enabled

    async def send_to_channel(self, channel: str, notification: ChannelNotification) -> bool:
        self.channel_messages.append((channel, notification))
        return True

    async def send_email(self, address: str, subject: str, body: str) -> bool:
        self.emails.append((address, subject, body))
        return True

    async def send_webhook(self, url: str, payload: Dict[str, Any]) -> bool:
        self.webhooks.append((url, payload))
        return True

    def on_channel(self, channel: str) -> List[ChannelNotification]:
        return [n for c, n in self.channel_messages if c == channel]


class StaticPolicyProvider(ISupportPolicyProvider, IAlertingPolicyProvider):
    def __init__(
        self,
        support: Optional[SupportPolicy] = None,
        alerting: Optional[AlertingPolicy] = None
    ):
        self.support = support or SupportPolicy()
        self.alerting = alerting or AlertingPolicy()

    def get_support_policy(self) -> SupportPolicy:
        return self.support

    def get_alerting_policy(self) -> AlertingPolicy:
        return self.alerting


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def uow_factory(session_factory):
    return lambda: SQLAlchemySupportUnitOfWork(session_factory)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def policy_provider():
    return StaticPolicyProvider()


@pytest.fixture
def ticket_service(uow_factory, dispatcher, policy_provider):
    return TicketService(uow_factory, dispatcher, policy_provider)


@pytest.fixture
def agent_service(uow_factory):
    return AgentDirectoryService(uow_factory)


@pytest.fixture
def requester():
    return Actor(user_id="user-1", role=SupportRole.USER, business_model=BM, tenant_id=TENANT,
                 email="user-1@example.com")


@pytest.fixture
def scope_admin():
    return Actor(user_id="admin-1", role=SupportRole.ADMIN, business_model=BM, tenant_id=TENANT)


@pytest.fixture
def platform_admin():
    return Actor(user_id="root", role=SupportRole.PLATFORM_ADMIN)


# ========== Seeding helpers ==========

async def configure_scope(
    session_factory,
    business_model: BusinessModel = BM,
    tenant_id: Optional[str] = TENANT,
    **overrides: Any
) -> SupportConfig:
    """Store a support configuration for a scope."""
    config = SupportConfig(business_model=business_model, tenant_id=tenant_id, **overrides)
    async with session_factory() as session:
        saved = await SQLAlchemySupportConfigRepository(session).save(config)
        await session.commit()
    return saved


async def add_agent(
    session_factory,
    user_id: str,
    role: SupportRole = SupportRole.ADMIN,
    business_model: BusinessModel = BM,
    tenant_id: Optional[str] = TENANT,
    categories: Optional[List[TicketCategory]] = None,
    **fields: Any
) -> Any:
    profile = AgentProfileDTO(
        user_id=user_id,
        role=role,
        business_model=business_model,
        tenant_id=tenant_id,
        categories=categories if categories is not None else list(TicketCategory),
        email=fields.pop("email", f"{user_id}@example.com"),
        **fields
    )
    async with session_factory() as session:
        model = await SQLAlchemyAgentRepository(session).upsert(profile)
        await session.commit()
    return model


_ticket_counter = 0


async def add_ticket_row(session_factory, **overrides: Any) -> TicketModel:
    """Insert a bare ticket row, bypassing the service (no SLA record unless given)."""
    global _ticket_counter
    _ticket_counter += 1
    now = datetime.now(timezone.utc)
    values = {
        "ticket_number": f"SEED-{_ticket_counter:06d}",
        "subject": "Seeded ticket",
        "description": "Seeded for tests",
        "category": TicketCategory.TECHNICAL.value,
        "priority": TicketPriority.MEDIUM.value,
        "status": TicketStatus.OPEN.value,
        "business_model": BM.value,
        "tenant_id": TENANT,
        "user_id": "someone",
        "metadata_": {},
        "tags": [],
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    model = TicketModel(**values)
    async with session_factory() as session:
        session.add(model)
        await session.commit()
    return model


async def add_open_tickets(session_factory, agent_id: str, count: int) -> None:
    for _ in range(count):
        await add_ticket_row(
            session_factory,
            assigned_to_id=agent_id,
            status=TicketStatus.IN_PROGRESS.value,
        )
