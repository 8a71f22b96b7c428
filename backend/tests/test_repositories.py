from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from officehours.models import (
    HelpSessionEntry,
    QueueBackup,
    ServerBackup,
    WaitingEntryBackup,
    WorkspaceSettings,
)
from officehours.repositories import (
    AttendanceRepository,
    BackupRepository,
    WorkspaceSettingsRepository,
)
from officehours.repositories.settings import _settings_cache
from tests.fakes import START


class FakeConnection:
    def __init__(self):
        self.rows = {}
        self.executed = []
        self.batches = []

    async def execute(self, sql, *args):
        self.executed.append((sql, args))
        if "workspace_backups" in sql:
            self.rows[args[0]] = args[2]

    async def executemany(self, sql, rows):
        self.batches.append(list(rows))

    async def fetchval(self, sql, workspace_id):
        return self.rows.get(workspace_id)

    async def fetchrow(self, sql, workspace_id):
        return self.rows.get(workspace_id)


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()
        self.acquired = 0

    @asynccontextmanager
    async def acquire(self):
        self.acquired += 1
        yield self.conn


@pytest.fixture(autouse=True)
def fresh_settings_cache():
    _settings_cache.clear()
    yield
    _settings_cache.clear()


@pytest.mark.asyncio
async def test_backup_is_stored_as_json():
    repo = BackupRepository(FakePool())
    backup = ServerBackup(
        workspace_id=42,
        workspace_name="Office Hours",
        timestamp=START,
        queues=[QueueBackup(1, "Math", [WaitingEntryBackup(1, START, "P1")], [5])],
    )

    await repo.save(backup)

    assert isinstance(repo.pool.conn.rows[42], str)
    assert await repo.load(42) == backup
    assert await repo.load(7) is None


@pytest.mark.asyncio
async def test_only_closed_sessions_are_written():
    repo = AttendanceRepository(FakePool())
    closed = HelpSessionEntry(1, 10, "Math", START, START + timedelta(minutes=2), START + timedelta(minutes=9))
    still_open = HelpSessionEntry(2, 10, "Math", START, START)

    await repo.add_help_sessions(42, [closed, still_open])
    await repo.add_help_sessions(42, [still_open])

    (batch,) = repo.pool.conn.batches
    assert [row[1] for row in batch] == [1]
    assert batch[0][-1] == 2 * 60 * 1000


@pytest.mark.asyncio
async def test_settings_defaults_are_cached():
    pool = FakePool()
    repo = WorkspaceSettingsRepository(pool)

    first = await repo.get(42)
    second = await repo.get(42)

    assert first == WorkspaceSettings(workspace_id=42)
    assert second is first
    assert pool.acquired == 1


@pytest.mark.asyncio
async def test_settings_update_invalidates_cache():
    pool = FakePool()
    repo = WorkspaceSettingsRepository(pool)
    await repo.get(42)

    await repo.update(42, tracking_enabled=True)
    await repo.get(42)

    sql, args = pool.conn.executed[-1]
    assert "tracking_enabled" in sql
    assert args == (42, True)
    assert pool.acquired == 3


@pytest.mark.asyncio
async def test_settings_update_rejects_unknown_fields():
    pool = FakePool()

    with pytest.raises(ValueError, match="workspace_name"):
        await WorkspaceSettingsRepository(pool).update(42, workspace_name="x")
    assert pool.acquired == 0
