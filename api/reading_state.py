"""
Reading-state transitions for a user's shelf.

A (email, bookId) pair is either absent, wishlisted or read. Read is
absorbing: once a book is marked read, every later write for the pair is
rejected and reported back to the caller.
"""

from enum import Enum
from typing import Optional

from api.models import ReadingStatus

WISHLIST_DUPLICATE_MESSAGE = "Book already in Wishlist"
ALREADY_READ_MESSAGE = "Already marked as Read. Cannot add to Wishlist."


class ReadingStateConflict(ValueError):
    """Raised when a requested status is not a legal transition."""


class TransitionAction(str, Enum):
    """Write needed to reach the requested status."""
    CREATE = "create"
    UPDATE = "update"


def apply_status(current: Optional[ReadingStatus], requested: ReadingStatus) -> TransitionAction:
    """
    Decide which write moves a pair from ``current`` to ``requested``.

    Args:
        current: Stored status, or None when no record exists
        requested: Status asked for by the caller

    Returns:
        TransitionAction to perform

    Raises:
        ReadingStateConflict: If the transition is rejected
    """
    if current is None:
        return TransitionAction.CREATE

    if current == ReadingStatus.READ:
        raise ReadingStateConflict(ALREADY_READ_MESSAGE)

    if requested == ReadingStatus.WISHLIST:
        raise ReadingStateConflict(WISHLIST_DUPLICATE_MESSAGE)

    return TransitionAction.UPDATE


def success_message(action: TransitionAction, status: ReadingStatus) -> str:
    """Message reported after a successful transition."""
    if action == TransitionAction.UPDATE:
        return "Book moved from wishlist to read"
    if status == ReadingStatus.WISHLIST:
        return "Book added to wishlist"
    return "Book marked as read"
