"""
Unit tests for reading-state transitions.
Tests the transition table and the repository that applies it.
"""

import pytest
from unittest.mock import AsyncMock

from api.models import ReadingStatus
from api.reading_state import (
    ALREADY_READ_MESSAGE, WISHLIST_DUPLICATE_MESSAGE,
    ReadingStateConflict, TransitionAction, apply_status
)


class TestApplyStatus:
    """Test cases for the transition table."""

    @pytest.mark.parametrize("requested", [ReadingStatus.WISHLIST, ReadingStatus.READ])
    def test_absent_creates(self, requested):
        assert apply_status(None, requested) == TransitionAction.CREATE

    def test_wishlist_to_read_updates(self):
        assert apply_status(ReadingStatus.WISHLIST, ReadingStatus.READ) == TransitionAction.UPDATE

    def test_wishlist_twice_rejected(self):
        with pytest.raises(ReadingStateConflict) as exc_info:
            apply_status(ReadingStatus.WISHLIST, ReadingStatus.WISHLIST)
        assert str(exc_info.value) == WISHLIST_DUPLICATE_MESSAGE

    @pytest.mark.parametrize("requested", [ReadingStatus.WISHLIST, ReadingStatus.READ])
    def test_read_is_absorbing(self, requested):
        with pytest.raises(ReadingStateConflict) as exc_info:
            apply_status(ReadingStatus.READ, requested)
        assert str(exc_info.value) == ALREADY_READ_MESSAGE


class TestReadingStateRepository:
    """Test cases for ReadingStateRepository."""

    @pytest.fixture
    def repo(self, db_service):
        return db_service.reading_states

    @pytest.mark.asyncio
    async def test_create_wishlist(self, repo):
        message = await repo.save_status("a@x.com", "b1", ReadingStatus.WISHLIST)

        assert "wishlist" in message
        assert repo.collection.docs[0]["status"] == "wishlist"

    @pytest.mark.asyncio
    async def test_wishlist_then_read_updates_in_place(self, repo):
        await repo.save_status("a@x.com", "b1", ReadingStatus.WISHLIST)
        await repo.save_status("a@x.com", "b1", ReadingStatus.READ)

        assert len(repo.collection.docs) == 1
        assert repo.collection.docs[0]["status"] == "read"

    @pytest.mark.asyncio
    async def test_read_rejects_without_writing(self, repo):
        await repo.save_status("a@x.com", "b1", ReadingStatus.READ)
        writes = repo.collection.writes

        for requested in (ReadingStatus.WISHLIST, ReadingStatus.READ):
            with pytest.raises(ReadingStateConflict):
                await repo.save_status("a@x.com", "b1", requested)

        assert repo.collection.writes == writes
        assert repo.collection.docs[0]["status"] == "read"

    @pytest.mark.asyncio
    async def test_pairs_are_independent(self, repo):
        await repo.save_status("a@x.com", "b1", ReadingStatus.READ)
        await repo.save_status("a@x.com", "b2", ReadingStatus.WISHLIST)
        await repo.save_status("c@x.com", "b1", ReadingStatus.WISHLIST)

        states = await repo.list_for_user("a@x.com")
        assert {(s.book_id, s.status) for s in states} == {
            ("b1", ReadingStatus.READ),
            ("b2", ReadingStatus.WISHLIST),
        }

    @pytest.mark.asyncio
    async def test_lost_create_race_reports_stored_state(self, db_service, repo):
        await db_service.create_indexes()
        repo.collection.docs.append({"email": "a@x.com", "bookId": "b1", "status": "wishlist"})
        # First lookup misses the concurrent insert, the retry sees it
        repo._current_status = AsyncMock(side_effect=[None, ReadingStatus.WISHLIST])

        with pytest.raises(ReadingStateConflict) as exc_info:
            await repo.save_status("a@x.com", "b1", ReadingStatus.WISHLIST)

        assert str(exc_info.value) == WISHLIST_DUPLICATE_MESSAGE
        assert len(repo.collection.docs) == 1

    @pytest.mark.asyncio
    async def test_lost_create_race_still_marks_read(self, db_service, repo):
        await db_service.create_indexes()
        repo.collection.docs.append({"email": "a@x.com", "bookId": "b1", "status": "wishlist"})
        repo._current_status = AsyncMock(side_effect=[None, ReadingStatus.WISHLIST])

        message = await repo.save_status("a@x.com", "b1", ReadingStatus.READ)

        assert message == "Book moved from wishlist to read"
        assert repo.collection.docs == [{"email": "a@x.com", "bookId": "b1", "status": "read"}]

    @pytest.mark.asyncio
    async def test_lookup_failure_propagates(self, repo):
        repo.collection.find_one = AsyncMock(side_effect=RuntimeError("connection reset"))

        with pytest.raises(RuntimeError):
            await repo.save_status("a@x.com", "b1", ReadingStatus.WISHLIST)

        assert repo.collection.docs == []

    @pytest.mark.asyncio
    async def test_update_failure_propagates(self, repo):
        await repo.save_status("a@x.com", "b1", ReadingStatus.WISHLIST)
        repo.collection.update_one = AsyncMock(side_effect=RuntimeError("connection reset"))

        with pytest.raises(RuntimeError):
            await repo.save_status("a@x.com", "b1", ReadingStatus.READ)

        assert repo.collection.docs[0]["status"] == "wishlist"
