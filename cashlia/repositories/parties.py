"""
Party Repository

Parties are the customers and suppliers of a business. Entries may
reference them, which blocks deletion.
"""

from typing import Optional

from cashlia.errors import NotFoundError
from cashlia.models import Party
from cashlia.repositories.base import LookupRepository
from cashlia.store import Contains, Eq, Insert, Or, Select, order


class PartyRepository(LookupRepository):
    """Parties of the current business, ordered by name."""

    table = "parties"
    reference_column = "party_id"
    ordering = order("name")

    async def create(self, name: str, phone: Optional[str] = None) -> Party:
        business = await self._require_business()
        now = self._store.now()
        party = Party(
            id=self._store.generate_id(),
            business_id=business.id,
            name=name,
            phone=phone or None,
            created_at=now,
            updated_at=now,
        )
        await self._store.execute(Insert("parties", party.to_row()))
        return party

    async def get_by_id(self, party_id: str) -> Optional[Party]:
        rows = await self._scoped_rows(party_id)
        return Party.model_validate(rows[0]) if rows else None

    async def update(
        self,
        party_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Party:
        """Change name and/or phone. An empty phone clears it."""
        party = await self.get_by_id(party_id)
        if party is None:
            raise NotFoundError(f"Party not found: {party_id}")
        values = {}
        if name is not None:
            values["name"] = name
        if phone is not None:
            values["phone"] = phone or None
        if not values:
            return party
        return await self._apply_patch(party, values, Eq("id", party_id))

    async def delete(self, party_id: str) -> None:
        """
        Hard-delete a party.

        Raises:
            ReferencedRecordError: If any entry references the party
            NotFoundError: If the party is not in the current business
        """
        await self._delete_unreferenced(party_id, "Party")

    async def search(self, term: str) -> list[Party]:
        """Case-insensitive substring match on name or phone."""
        business = await self._context.get_current_business()
        if business is None:
            return []
        rows = await self._store.query(Select(
            "parties",
            Eq("business_id", business.id) & Or(Contains("name", term), Contains("phone", term)),
            order_by=self.ordering,
        ))
        return [Party.model_validate(row) for row in rows]

    async def list(self) -> list[Party]:
        return [Party.model_validate(row) for row in await self._scoped_rows()]
