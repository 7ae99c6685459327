"""
Category Repository

Categories carry an explicit display order that users can rearrange.
"""

from typing import Optional

from cashlia.errors import NotFoundError
from cashlia.models import Category
from cashlia.repositories.base import LookupRepository
from cashlia.store import Eq, Insert, Update, order


class CategoryRepository(LookupRepository):
    """Categories of the current business, in display order then name."""

    table = "categories"
    reference_column = "category_id"
    ordering = order("display_order", "name")

    async def create(self, name: str, display_order: Optional[int] = None) -> Category:
        """Create a category; without an explicit order it goes last."""
        business = await self._require_business()
        if display_order is None:
            display_order = await self.get_max_display_order() + 1
        now = self._store.now()
        category = Category(
            id=self._store.generate_id(),
            business_id=business.id,
            name=name,
            display_order=display_order,
            created_at=now,
            updated_at=now,
        )
        await self._store.execute(Insert("categories", category.to_row()))
        return category

    async def get_by_id(self, category_id: str) -> Optional[Category]:
        rows = await self._scoped_rows(category_id)
        return Category.model_validate(rows[0]) if rows else None

    async def update(
        self,
        category_id: str,
        name: Optional[str] = None,
        display_order: Optional[int] = None,
    ) -> Category:
        category = await self.get_by_id(category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")
        values = {}
        if name is not None:
            values["name"] = name
        if display_order is not None:
            values["display_order"] = display_order
        if not values:
            return category
        return await self._apply_patch(category, values, Eq("id", category_id))

    async def delete(self, category_id: str) -> None:
        """
        Hard-delete a category.

        Raises:
            ReferencedRecordError: If any entry references the category
            NotFoundError: If the category is not in the current business
        """
        await self._delete_unreferenced(category_id, "Category")

    async def get_max_display_order(self) -> int:
        rows = await self._scoped_rows()
        return max((row["display_order"] for row in rows), default=0)

    async def reorder(self, category_ids: list[str]) -> None:
        """
        Assign display_order 1..n in the given order, in one transaction.

        Ids outside the current business are left untouched.
        """
        business = await self._require_business()
        now = self._store.now()
        await self._store.run_transaction([
            Update(
                "categories",
                self._stamped({"display_order": index}, now),
                Eq("id", category_id) & Eq("business_id", business.id),
            )
            for index, category_id in enumerate(category_ids, start=1)
        ])

    async def list(self) -> list[Category]:
        return [Category.model_validate(row) for row in await self._scoped_rows()]
