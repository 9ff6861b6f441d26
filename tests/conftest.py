"""Pytest configuration and shared fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.notifications.channels import PushChannels  # noqa: E402
from src.notifications.datastore import InMemoryDatastore  # noqa: E402
from src.notifications.models import ChannelSendResult  # noqa: E402
from src.notifications.service import NotificationService  # noqa: E402


class FakeMobileChannel:
    """Records mobile sends; tokens listed in ``failures`` fail with that code."""

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.batches = []

    async def send_batch(self, targets, content, data=None):
        self.batches.append((list(targets), content, dict(data or {})))
        results = []
        for target in targets:
            code = self.failures.get(target.token)
            if code is None:
                results.append(ChannelSendResult(
                    target_id=target.target_id, success=True, message_id=f"ticket-{target.token}",
                ))
            else:
                results.append(ChannelSendResult(
                    target_id=target.target_id, success=False,
                    error_code=code, error_message=f'"{target.token}" failed: {code}',
                ))
        return results

    async def close(self):
        pass


class FakeWebChannel:
    """Records web sends; endpoints listed in ``failures`` fail with that code."""

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.sent = []

    async def send(self, target, content, data=None):
        self.sent.append((target, content, dict(data or {})))
        code = self.failures.get(target.endpoint)
        if code is None:
            return ChannelSendResult(target_id=target.target_id, success=True)
        return ChannelSendResult(
            target_id=target.target_id, success=False,
            error_code=code, error_message=f"Push failed: {code}",
        )

    async def close(self):
        pass


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def datastore():
    store = InMemoryDatastore()
    for user_id in ("u-ana", "u-bruno", "u-carla"):
        store.add_user(user_id)
    return store


@pytest.fixture
def mobile_channel():
    return FakeMobileChannel()


@pytest.fixture
def web_channel():
    return FakeWebChannel()


@pytest.fixture
def service(datastore, mobile_channel, web_channel):
    return NotificationService(
        datastore=datastore,
        channels=PushChannels(mobile=mobile_channel, web=web_channel),
    )


@pytest.fixture
def clock():
    return StepClock()
