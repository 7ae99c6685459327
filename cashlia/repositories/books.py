"""
Book Repository

Books belong to the current business and are soft-deleted. Cloning
copies a book and all of its entries in one transaction.
"""

from typing import Optional

import structlog

from cashlia.errors import NotFoundError
from cashlia.models import Book, Entry, SyncStatus
from cashlia.repositories.base import ScopedRepository
from cashlia.store import Eq, Insert, Select, Update, order


logger = structlog.get_logger(__name__)


class BookRepository(ScopedRepository):
    """Books of the current business."""

    table = "books"

    async def create(self, name: str) -> Book:
        """
        Create a book in the current business.

        The new book becomes current if no book is selected.
        """
        user = await self._context.require_user()
        business = await self._require_business()
        now = self._store.now()
        book = Book(
            id=self._store.generate_id(),
            business_id=business.id,
            name=name,
            created_by=user.id,
            created_at=now,
            updated_at=now,
        )
        await self._store.execute(Insert("books", book.to_row()))
        logger.info("book_created", book_id=book.id, business_id=business.id)

        if await self._context.get_current_book() is None:
            await self._context.set_current_book(book.id)
        return book

    async def get_by_id(self, book_id: str) -> Optional[Book]:
        """The book if it is live and belongs to the current business."""
        business = await self._context.get_current_business()
        if business is None:
            return None
        rows = await self._store.query(Select(
            "books",
            Eq("id", book_id) & Eq("business_id", business.id) & Eq("is_deleted", 0),
            limit=1,
        ))
        return Book.model_validate(rows[0]) if rows else None

    async def update(self, book_id: str, name: str) -> Book:
        book = await self.get_by_id(book_id)
        if book is None:
            raise NotFoundError(f"Book not found: {book_id}")
        return await self._apply_patch(book, {"name": name}, Eq("id", book_id))

    async def delete(self, book_id: str) -> None:
        """Soft-delete a book and drop it from the selection."""
        book = await self.get_by_id(book_id)
        if book is None:
            raise NotFoundError(f"Book not found: {book_id}")
        await self._store.execute(Update(
            "books",
            self._stamped({"is_deleted": 1}),
            Eq("id", book_id),
        ))
        await self._context.forget_book(book_id)
        logger.info("book_deleted", book_id=book_id)

    async def clone(self, book_id: str, new_name: str) -> Book:
        """
        Copy a book and every entry in it.

        Cloned entries get fresh ids, the signed-in user as creator,
        pending status and the current timestamp; all other fields
        (including date_time) match the source. One transaction.
        """
        user = await self._context.require_user()
        source = await self.get_by_id(book_id)
        if source is None:
            raise NotFoundError(f"Book not found: {book_id}")

        now = self._store.now()
        clone = Book(
            id=self._store.generate_id(),
            business_id=source.business_id,
            name=new_name,
            created_by=user.id,
            created_at=now,
            updated_at=now,
        )
        entries = await self._store.query(Select("entries", Eq("book_id", source.id)))

        statements = [Insert("books", clone.to_row())]
        for row in entries:
            copied = Entry.model_validate({
                **row,
                "id": self._store.generate_id(),
                "book_id": clone.id,
                "created_by": user.id,
                "sync_status": SyncStatus.PENDING,
                "created_at": now,
                "updated_at": now,
            })
            statements.append(Insert("entries", copied.to_row()))
        await self._store.run_transaction(statements)
        logger.info("book_cloned", source_id=source.id, book_id=clone.id, entries=len(entries))

        if await self._context.get_current_book() is None:
            await self._context.set_current_book(clone.id)
        return clone

    async def list(self) -> list[Book]:
        """Live books of the current business, most recently updated first."""
        business = await self._context.get_current_business()
        if business is None:
            return []
        rows = await self._store.query(Select(
            "books",
            Eq("business_id", business.id) & Eq("is_deleted", 0),
            order_by=order("-updated_at"),
        ))
        return [Book.model_validate(row) for row in rows]
