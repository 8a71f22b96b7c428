import hashlib
from contextlib import asynccontextmanager

import pytest

from officehours.migrations import MigrationRunner
from officehours.migrations.runner import VERSIONS_DIR


class FakeConnection:
    def __init__(self, applied):
        self.applied = applied
        self.executed = []

    async def execute(self, sql, *args):
        self.executed.append(sql.strip())
        if args:
            version, checksum = args
            self.applied[version] = checksum

    async def fetch(self, sql):
        return [{"version": v, "checksum": c} for v, c in self.applied.items()]

    @asynccontextmanager
    async def transaction(self):
        yield


class FakePool:
    def __init__(self, applied=None):
        self.conn = FakeConnection(dict(applied or {}))

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def write(directory, name, sql):
    path = directory / name
    path.write_text(sql, encoding="utf-8")
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


@pytest.mark.asyncio
async def test_applies_pending_in_filename_order(tmp_path):
    write(tmp_path, "001_second.sql", "CREATE TABLE b ();")
    write(tmp_path, "000_first.sql", "CREATE TABLE a ();")
    pool = FakePool()

    applied = await MigrationRunner(pool, tmp_path).run_pending()

    assert applied == ["000_first", "001_second"]
    assert "CREATE TABLE a ();" in pool.conn.executed
    assert set(pool.conn.applied) == {"000_first", "001_second"}


@pytest.mark.asyncio
async def test_skips_recorded_versions(tmp_path, caplog):
    first = write(tmp_path, "000_first.sql", "CREATE TABLE a ();")
    write(tmp_path, "001_second.sql", "CREATE TABLE b ();")
    pool = FakePool({"000_first": first, "001_second": "edited"})

    applied = await MigrationRunner(pool, tmp_path).run_pending()

    assert applied == []
    assert "001_second changed after it was applied" in caplog.text


def test_ships_initial_schema():
    versions = [m.version for m in MigrationRunner(None).discover()]

    assert versions[0] == "000_initial_schema"
    assert (VERSIONS_DIR / "000_initial_schema.sql").exists()
