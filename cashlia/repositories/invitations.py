"""
Business Invitations

Invitation links look like:
    cashlia://invite?business=<business_id>&token=<64 hex chars>

DESIGN DECISION: A token is a bearer secret, so it is single-use and
short-lived. Accepting an invitation deletes the token and inserts the
team membership in one transaction guarded by an Ensure on the token
row. Two devices racing to accept the same link cannot both succeed.
"""

import json
import secrets
from datetime import timedelta
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

import structlog
from pydantic import BaseModel

from cashlia.errors import InvitationNotFoundError, NotFoundError, ValidationError
from cashlia.models import BusinessInvitation, BusinessRole, BusinessTeam
from cashlia.repositories.context import ContextSelector
from cashlia.store import (
    Delete,
    Ensure,
    EnsureFailedError,
    Eq,
    Gt,
    Insert,
    LocalStore,
    Lte,
    PreferenceKey,
    PreferenceStore,
    Select,
)
from cashlia.store.clock import format_timestamp, parse_timestamp


logger = structlog.get_logger(__name__)

TOKEN_BYTES = 32


class InvitationLink(BaseModel):
    """The parts of an invitation deep link."""

    business_id: str
    token: str


class InvitationService:
    """Creates, parses and redeems invitation links."""

    def __init__(
        self,
        store: LocalStore,
        preferences: PreferenceStore,
        context: ContextSelector,
        scheme: str = "cashlia",
        ttl_days: int = 7,
    ):
        self._store = store
        self._preferences = preferences
        self._context = context
        self._scheme = scheme
        self._ttl = timedelta(days=ttl_days)

    async def generate_invitation_link(self, business_id: str, role: BusinessRole) -> str:
        """
        Create a one-time invitation for a business.

        Raises:
            AuthenticationError: If nobody is signed in
            NotFoundError: If the business is not visible to the user
        """
        await self._context.require_user()
        if await self._context.get_visible_business(business_id) is None:
            raise NotFoundError(f"Business not found: {business_id}")

        now = self._store.now()
        invitation = BusinessInvitation(
            business_id=business_id,
            token=secrets.token_hex(TOKEN_BYTES),
            role=role,
            created_at=now,
            expires_at=format_timestamp(parse_timestamp(now) + self._ttl),
        )
        await self._store.execute(Insert("business_invitations", invitation.to_row(), replace=True))
        logger.info("invitation_created", business_id=business_id, role=role.value)
        return self.build_link(invitation.business_id, invitation.token)

    def build_link(self, business_id: str, token: str) -> str:
        query = urlencode({"business": business_id, "token": token})
        return f"{self._scheme}://invite?{query}"

    def parse_invitation_link(self, url: str) -> Optional[InvitationLink]:
        """Extract business id and token, or None if this is not an invite link."""
        parsed = urlparse(url.strip())
        if parsed.scheme != self._scheme or parsed.netloc != "invite":
            return None
        params = parse_qs(parsed.query)
        business_id = params.get("business", [""])[0]
        token = params.get("token", [""])[0]
        if not business_id or not token:
            return None
        return InvitationLink(business_id=business_id, token=token)

    async def accept_invitation(self, business_id: str, token: str) -> BusinessTeam:
        """
        Redeem an invitation for the signed-in user.

        Raises:
            AuthenticationError: If nobody is signed in
            InvitationNotFoundError: If the token is unknown, expired,
                already used, or belongs to another business
            ValidationError: If the signed-in user owns the business;
                the token is left unused
        """
        user = await self._context.require_user()
        now = self._store.now()
        token_match = Eq("token", token) & Eq("business_id", business_id) & Gt("expires_at", now)
        rows = await self._store.query(Select("business_invitations", token_match, limit=1))
        if not rows:
            raise InvitationNotFoundError("Invalid or expired invitation")
        invitation = BusinessInvitation.model_validate(rows[0])

        business = await self._store.query(Select("businesses", Eq("id", business_id), limit=1))
        owner_id = business[0]["owner_id"] if business else None
        if owner_id == user.id:
            raise ValidationError("You already own this business")

        # Re-joining keeps the membership id
        existing = await self._store.query(Select(
            "business_team",
            Eq("business_id", business_id) & Eq("user_id", user.id),
            limit=1,
        ))
        member = BusinessTeam(
            id=existing[0]["id"] if existing else self._store.generate_id(),
            business_id=business_id,
            user_id=user.id,
            role=invitation.role,
            invited_by=owner_id,
            joined_at=now,
            created_at=existing[0]["created_at"] if existing else now,
            updated_at=now,
        )
        try:
            await self._store.run_transaction([
                Ensure(
                    Select("business_invitations", token_match),
                    exists=True,
                    message="Invalid or expired invitation",
                ),
                Delete("business_invitations", Eq("token", token)),
                Insert("business_team", member.to_row(), replace=True),
            ])
        except EnsureFailedError as e:
            raise InvitationNotFoundError(str(e)) from e

        logger.info("invitation_accepted", business_id=business_id, user_id=user.id)
        return member

    async def handle_deep_link(self, url: str) -> Optional[BusinessTeam]:
        """
        React to an opened invitation link.

        Signed in: accept now. Signed out: remember the invitation until
        the next sign-in and return None.

        Raises:
            ValidationError: If the URL is not an invitation link
        """
        link = self.parse_invitation_link(url)
        if link is None:
            raise ValidationError(f"Not an invitation link: {url}")
        if await self._context.current_user() is None:
            await self._preferences.set(PreferenceKey.PENDING_INVITATION, link.model_dump_json())
            logger.info("invitation_deferred", business_id=link.business_id)
            return None
        return await self.accept_invitation(link.business_id, link.token)

    async def pop_pending_invitation(self) -> Optional[InvitationLink]:
        raw = await self._preferences.get(PreferenceKey.PENDING_INVITATION)
        if not raw:
            return None
        await self._preferences.remove(PreferenceKey.PENDING_INVITATION)
        try:
            return InvitationLink.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValueError):
            logger.warning("pending_invitation_unreadable")
            return None

    async def purge_expired(self) -> int:
        """Delete invitations past their expiry. Returns how many."""
        result = await self._store.execute(Delete(
            "business_invitations",
            Lte("expires_at", self._store.now()),
        ))
        return result.rows_affected
