"""Tests for engine and session factory construction."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from mailgraph.core.config import Settings
from mailgraph.core.database import create_engine, pool_size_for


class TestPoolSize:
    """Test suite for worker-based pool sizing."""

    @pytest.mark.parametrize(("workers", "expected"), [(1, 5), (4, 5), (10, 11), (100, 101)])
    def test_one_connection_per_worker_plus_one(self, workers: int, expected: int) -> None:
        assert pool_size_for(workers) == expected


class TestCreateEngine:
    """Test suite for create_engine. No connection is opened."""

    @pytest.mark.asyncio
    async def test_pool_follows_worker_count(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"extraction_workers": 50})

        engine, session_factory = create_engine(settings)
        try:
            assert engine.pool.size() == 51
            assert engine.url.database == "mailgraph_test"
            assert session_factory.class_ is AsyncSession
            assert session_factory.kw["expire_on_commit"] is False
        finally:
            await engine.dispose()
