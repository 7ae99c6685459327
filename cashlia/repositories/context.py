"""
Context Selector

Tracks the current business and the current book. Every scoped
repository receives this object and asks it which tenant it may touch.

DESIGN DECISION: The selection lives only in the preference store and is
revalidated lazily on read. Switching business does NOT eagerly clear
the book; the next read of the book notices the mismatch and clears it.
That keeps set_current_business() trivially cheap and means a selection
can never outlive the rows it points at.
"""

from typing import Optional

import structlog

from cashlia.models import Book, Business, User
from cashlia.repositories.users import UserRepository
from cashlia.store import Eq, In, LocalStore, PreferenceKey, PreferenceStore, Select


logger = structlog.get_logger(__name__)


class ContextSelector:
    """Current business/book selection for one install."""

    def __init__(self, store: LocalStore, preferences: PreferenceStore, users: UserRepository):
        self._store = store
        self._preferences = preferences
        self._users = users

    @property
    def users(self) -> UserRepository:
        return self._users

    async def current_user(self) -> Optional[User]:
        return await self._users.get_current_user()

    async def require_user(self) -> User:
        return await self._users.require_user()

    # -------------------------------------------------------------------------
    # Businesses
    # -------------------------------------------------------------------------

    async def get_businesses(self) -> list[Business]:
        """
        Businesses the signed-in user owns or is a team member of.

        Deleted businesses are excluded. Sorted by updated_at, newest first.
        """
        user = await self.current_user()
        if user is None:
            return []

        owned = await self._store.query(Select(
            "businesses",
            Eq("owner_id", user.id) & Eq("is_deleted", 0),
        ))
        memberships = await self._store.query(Select("business_team", Eq("user_id", user.id)))
        shared = []
        if memberships:
            shared = await self._store.query(Select(
                "businesses",
                In("id", [m["business_id"] for m in memberships]) & Eq("is_deleted", 0),
            ))

        unique = {row["id"]: row for row in owned + shared}
        rows = sorted(unique.values(), key=lambda row: row["updated_at"], reverse=True)
        return [Business.model_validate(row) for row in rows]

    async def get_visible_business(self, business_id: str) -> Optional[Business]:
        """The business if it exists, is not deleted and the user may see it."""
        user = await self.current_user()
        if user is None:
            return None
        rows = await self._store.query(Select(
            "businesses",
            Eq("id", business_id) & Eq("is_deleted", 0),
            limit=1,
        ))
        if not rows:
            return None
        business = Business.model_validate(rows[0])
        if business.owner_id == user.id:
            return business
        membership = await self._store.query(Select(
            "business_team",
            Eq("business_id", business_id) & Eq("user_id", user.id),
            limit=1,
        ))
        return business if membership else None

    async def set_current_business(self, business_id: str) -> None:
        await self._preferences.set(PreferenceKey.CURRENT_BUSINESS_ID, business_id)

    async def get_current_business_id(self) -> Optional[str]:
        return await self._preferences.get(PreferenceKey.CURRENT_BUSINESS_ID)

    async def get_current_business(self) -> Optional[Business]:
        """
        The selected business, if the signed-in user can still see it.

        A selection that no longer resolves is cleared.
        """
        business_id = await self.get_current_business_id()
        if not business_id:
            return None
        business = await self.get_visible_business(business_id)
        if business is None:
            logger.info("stale_business_selection_cleared", business_id=business_id)
            await self.clear_current_business()
        return business

    async def clear_current_business(self) -> None:
        await self._preferences.remove(PreferenceKey.CURRENT_BUSINESS_ID)

    # -------------------------------------------------------------------------
    # Books
    # -------------------------------------------------------------------------

    async def set_current_book(self, book_id: str) -> None:
        await self._preferences.set(PreferenceKey.CURRENT_BOOK_ID, book_id)

    async def get_current_book(self) -> Optional[Book]:
        """
        The selected book, validated against the current business.

        Clears the selection and returns None when the book is gone,
        belongs to another business, or the current business itself
        does not resolve for the signed-in user.
        """
        book_id = await self._preferences.get(PreferenceKey.CURRENT_BOOK_ID)
        if not book_id:
            return None

        rows = await self._store.query(Select(
            "books",
            Eq("id", book_id) & Eq("is_deleted", 0),
            limit=1,
        ))
        business = await self.get_current_business()
        if not rows or business is None or rows[0]["business_id"] != business.id:
            logger.info("stale_book_selection_cleared", book_id=book_id)
            await self.clear_current_book()
            return None
        return Book.model_validate(rows[0])

    async def get_current_book_id(self) -> Optional[str]:
        book = await self.get_current_book()
        return book.id if book else None

    async def clear_current_book(self) -> None:
        await self._preferences.remove(PreferenceKey.CURRENT_BOOK_ID)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    async def forget_business(self, business_id: str) -> None:
        """Drop the selection if it points at a deleted business."""
        if await self.get_current_business_id() == business_id:
            await self.clear()

    async def forget_book(self, book_id: str) -> None:
        if await self._preferences.get(PreferenceKey.CURRENT_BOOK_ID) == book_id:
            await self.clear_current_book()

    async def clear(self) -> None:
        await self.clear_current_business()
        await self.clear_current_book()
