"""
Business and Team Repositories

A business is created together with its owner's team row, in one
transaction, so there is never a business without an owner membership.
Businesses are soft-deleted; team rows are hard-deleted.
"""

from typing import Optional

import structlog

from cashlia.errors import NotFoundError, ValidationError
from cashlia.models import Business, BusinessRole, BusinessTeam
from cashlia.repositories.base import ScopedRepository
from cashlia.store import Delete, Eq, Insert, Select, Update, order


logger = structlog.get_logger(__name__)


class BusinessRepository(ScopedRepository):
    """Businesses visible to the signed-in user."""

    table = "businesses"

    async def create(self, name: str) -> Business:
        """
        Create a business owned by the signed-in user.

        The owner's team membership is written in the same transaction.
        The new business becomes current if nothing is selected.
        """
        user = await self._context.require_user()
        now = self._store.now()
        business = Business(
            id=self._store.generate_id(),
            name=name,
            owner_id=user.id,
            created_at=now,
            updated_at=now,
        )
        owner = BusinessTeam(
            id=self._store.generate_id(),
            business_id=business.id,
            user_id=user.id,
            role=BusinessRole.OWNER,
            invited_by=user.id,
            joined_at=now,
            created_at=now,
            updated_at=now,
        )
        await self._store.run_transaction([
            Insert("businesses", business.to_row()),
            Insert("business_team", owner.to_row()),
        ])
        logger.info("business_created", business_id=business.id, owner_id=user.id)

        if await self._context.get_current_business() is None:
            await self._context.set_current_business(business.id)
        return business

    async def list(self) -> list[Business]:
        return await self._context.get_businesses()

    async def get_by_id(self, business_id: str) -> Optional[Business]:
        return await self._context.get_visible_business(business_id)

    async def update(self, business_id: str, name: str) -> Business:
        business = await self.get_by_id(business_id)
        if business is None:
            raise NotFoundError(f"Business not found: {business_id}")
        return await self._apply_patch(business, {"name": name}, Eq("id", business_id))

    async def delete(self, business_id: str) -> None:
        """
        Soft-delete a business. Only its owner may do this.

        Clears the current selection if it pointed at this business.
        """
        user = await self._context.require_user()
        business = await self.get_by_id(business_id)
        if business is None:
            raise NotFoundError(f"Business not found: {business_id}")
        if business.owner_id != user.id:
            raise ValidationError("Only the owner can delete a business")

        await self._store.execute(Update(
            "businesses",
            self._stamped({"is_deleted": 1}),
            Eq("id", business_id),
        ))
        await self._context.forget_business(business_id)
        logger.info("business_deleted", business_id=business_id)

    async def get_user_role(self, business_id: str) -> Optional[BusinessRole]:
        """The signed-in user's role in a business, or None."""
        user = await self._context.current_user()
        if user is None:
            return None
        business = await self.get_by_id(business_id)
        if business is None:
            return None
        if business.owner_id == user.id:
            return BusinessRole.OWNER
        rows = await self._store.query(Select(
            "business_team",
            Eq("business_id", business_id) & Eq("user_id", user.id),
            limit=1,
        ))
        return BusinessRole(rows[0]["role"]) if rows else None


class BusinessTeamRepository(ScopedRepository):
    """Team memberships of businesses visible to the signed-in user."""

    table = "business_team"

    async def _visible_business(self, business_id: str) -> Business:
        business = await self._context.get_visible_business(business_id)
        if business is None:
            raise NotFoundError(f"Business not found: {business_id}")
        return business

    async def _membership(self, business_id: str, user_id: str) -> Optional[dict]:
        rows = await self._store.query(Select(
            "business_team",
            Eq("business_id", business_id) & Eq("user_id", user_id),
            limit=1,
        ))
        return rows[0] if rows else None

    async def add_member(
        self,
        business_id: str,
        user_id: str,
        role: BusinessRole,
    ) -> BusinessTeam:
        """
        Add (or re-add) a user to a business.

        An existing membership of the same user is replaced in place and
        keeps its id, so remote copies stay addressable.

        Raises:
            ValidationError: If this would demote the business owner
        """
        inviter = await self._context.require_user()
        business = await self._visible_business(business_id)
        if user_id == business.owner_id and role != BusinessRole.OWNER:
            raise ValidationError("The owner's role cannot be changed")
        existing = await self._membership(business_id, user_id)
        now = self._store.now()
        member = BusinessTeam(
            id=existing["id"] if existing else self._store.generate_id(),
            business_id=business_id,
            user_id=user_id,
            role=role,
            invited_by=inviter.id,
            joined_at=now,
            created_at=existing["created_at"] if existing else now,
            updated_at=now,
        )
        await self._store.execute(Insert("business_team", member.to_row(), replace=True))
        logger.info("team_member_added", business_id=business_id, user_id=user_id, role=role.value)
        return member

    async def get_team_members(self, business_id: str) -> list[BusinessTeam]:
        if await self._context.get_visible_business(business_id) is None:
            return []
        rows = await self._store.query(Select(
            "business_team",
            Eq("business_id", business_id),
            order_by=order("joined_at"),
        ))
        return [BusinessTeam.model_validate(row) for row in rows]

    async def list(self) -> list[BusinessTeam]:
        """Members of the current business."""
        business = await self._context.get_current_business()
        if business is None:
            return []
        return await self.get_team_members(business.id)

    async def get_by_id(self, member_id: str) -> Optional[BusinessTeam]:
        business = await self._context.get_current_business()
        if business is None:
            return None
        rows = await self._store.query(Select(
            "business_team",
            Eq("id", member_id) & Eq("business_id", business.id),
            limit=1,
        ))
        return BusinessTeam.model_validate(rows[0]) if rows else None

    async def update_role(self, business_id: str, user_id: str, role: BusinessRole) -> None:
        business = await self._visible_business(business_id)
        if user_id == business.owner_id:
            raise ValidationError("The owner's role cannot be changed")
        result = await self._store.execute(Update(
            "business_team",
            self._stamped({"role": role.value}),
            Eq("business_id", business_id) & Eq("user_id", user_id),
        ))
        if result.rows_affected == 0:
            raise NotFoundError(f"User {user_id} is not a member of {business_id}")

    async def remove_member(self, business_id: str, user_id: str) -> None:
        business = await self._visible_business(business_id)
        if user_id == business.owner_id:
            raise ValidationError("The owner cannot be removed from a business")
        membership = await self._membership(business_id, user_id)
        if membership is None:
            raise NotFoundError(f"User {user_id} is not a member of {business_id}")
        await self._store.run_transaction([
            Delete("business_team", Eq("id", membership["id"])),
            self._deletion(membership),
        ])
        logger.info("team_member_removed", business_id=business_id, user_id=user_id)
