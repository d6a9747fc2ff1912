from __future__ import annotations

import os

# Bind settings to an isolated in-memory database before fieldops modules load.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.pop("RLS_POLICY_PATH", None)

import pytest

from fieldops.persistence.db import create_schema, engine


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Each test gets an empty schema; disposing the StaticPool drops the in-memory database.
    await create_schema()
    yield
    await engine.dispose()
