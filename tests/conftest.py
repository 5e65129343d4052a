import pytest

from config import VotingSettings
from core.approval_engine import GroupApprovalEngine
from core.dispatcher import ActionDispatcher
from fakes import FakeExecutor, FakeTimerFactory, FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def dispatcher(executor, transport):
    return ActionDispatcher(executor, transport)


@pytest.fixture
def engine(transport, dispatcher, timers):
    return GroupApprovalEngine(
        transport,
        dispatcher,
        settings=VotingSettings(),
        timer_factory=timers,
    )


@pytest.fixture
def order_payload():
    return {"market_id": "14", "side": "long", "size": 1, "order_type": "market"}
