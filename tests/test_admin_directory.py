import pytest
from telegram.error import NetworkError

from sendapp.admin_directory import AdminDirectory


class _FakeSafeOps:
    def __init__(self):
        self.calls = 0
        self.admins = [1, 2]
        self.error = None

    async def get_chat_administrators(self, chat_id):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.admins)


@pytest.fixture
def now():
    return [0.0]


@pytest.fixture
def safe_ops():
    return _FakeSafeOps()


@pytest.fixture
def directory(safe_ops, now):
    return AdminDirectory(safe_ops, ttl_seconds=3600, timer=lambda: now[0])


@pytest.mark.asyncio
async def test_admins_are_cached_for_ttl(directory, safe_ops, now):
    assert await directory.is_admin(-1, 1)
    assert not await directory.is_admin(-1, 3)
    assert safe_ops.calls == 1

    now[0] = 3601.0
    safe_ops.admins = [3]
    assert await directory.is_admin(-1, 3)
    assert safe_ops.calls == 2


@pytest.mark.asyncio
async def test_fetch_failure_uses_last_known_list(directory, safe_ops, now):
    await directory.admin_ids(-1)
    now[0] = 4000.0
    safe_ops.error = NetworkError("down")
    assert await directory.admin_ids(-1) == frozenset({1, 2})


@pytest.mark.asyncio
async def test_fetch_failure_without_history_means_no_admins(directory, safe_ops):
    safe_ops.error = NetworkError("down")
    assert await directory.admin_ids(-5) == frozenset()


@pytest.mark.asyncio
async def test_invalidate_forces_refetch(directory, safe_ops):
    await directory.admin_ids(-1)
    directory.invalidate(-1)
    await directory.admin_ids(-1)
    assert safe_ops.calls == 2
