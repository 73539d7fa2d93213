"""Tests for profile store and viewer scope resolution."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sales_pipeline.db.models import UserProfileRow
from sales_pipeline.domain.records import UserProfile
from sales_pipeline.errors import NotFound
from sales_pipeline.store.profile_store import get_all, get_by_user_id, resolve_viewer_scope


class TestProfileReads:
    @pytest.mark.asyncio
    async def test_get_all(self):
        session = AsyncMock()
        result = MagicMock()
        result.scalars.return_value.all.return_value = [
            UserProfileRow(id="p1", user_id="u1", role="manager", full_name="Maya"),
        ]
        session.execute = AsyncMock(return_value=result)

        profiles = await get_all(session)
        assert profiles == [UserProfile(id="p1", user_id="u1", role="manager", full_name="Maya")]

    @pytest.mark.asyncio
    async def test_get_by_user_id_missing(self):
        session = AsyncMock()
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        session.execute = AsyncMock(return_value=result)

        with pytest.raises(NotFound):
            await get_by_user_id(session, "ghost")


class TestResolveViewerScope:
    @pytest.mark.asyncio
    @patch("sales_pipeline.store.profile_store.get_all")
    @patch("sales_pipeline.store.profile_store.get_by_user_id")
    async def test_manager_scope(self, mock_get_by_user_id, mock_get_all):
        manager = UserProfile(id="p1", user_id="u1", role="manager")
        rep = UserProfile(id="p2", user_id="u2", role="account_manager", manager_id="p1")
        mock_get_by_user_id.return_value = manager
        mock_get_all.return_value = [manager, rep]

        viewer, scope, profiles = await resolve_viewer_scope(AsyncMock(), "u1")
        assert viewer is manager
        assert scope.owner_ids == {"u1", "u2"}
        assert scope.resolved_by == "team"
        assert len(profiles) == 2
