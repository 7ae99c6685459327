"""
User Repository and Session

Registration, sign-in and the current-user session. The session is
just the signed-in user's id in the preference store; the user row is
always re-read from the local store.
"""

from typing import Optional

import structlog

from cashlia.errors import AuthenticationError, DuplicateUserError, NotFoundError
from cashlia.models import FederatedIdentity, User
from cashlia.security import hash_password, verify_password
from cashlia.store import Eq, Insert, LocalStore, Or, PreferenceKey, PreferenceStore, Select, Update


logger = structlog.get_logger(__name__)


class UserRepository:
    """Users, credentials and the signed-in session."""

    def __init__(self, store: LocalStore, preferences: PreferenceStore):
        self._store = store
        self._preferences = preferences

    async def get_by_id(self, user_id: str) -> Optional[User]:
        rows = await self._store.query(Select("users", Eq("id", user_id), limit=1))
        return User.model_validate(rows[0]) if rows else None

    async def find_by_email(self, email: str) -> Optional[User]:
        rows = await self._store.query(Select("users", Eq("email", email.strip().lower()), limit=1))
        return User.model_validate(rows[0]) if rows else None

    async def find_by_mobile(self, mobile: str) -> Optional[User]:
        rows = await self._store.query(Select("users", Eq("mobile", mobile.strip()), limit=1))
        return User.model_validate(rows[0]) if rows else None

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    async def get_current_user(self) -> Optional[User]:
        user_id = await self._preferences.get(PreferenceKey.USER_SESSION)
        if not user_id:
            return None
        user = await self.get_by_id(user_id)
        if user is None:
            await self._preferences.remove(PreferenceKey.USER_SESSION)
        return user

    async def require_user(self) -> User:
        """
        Return the signed-in user.

        Raises:
            AuthenticationError: If nobody is signed in
        """
        user = await self.get_current_user()
        if user is None:
            raise AuthenticationError("User not authenticated")
        return user

    async def register(self, email: str, mobile: Optional[str], password: str) -> User:
        """
        Create a user with a password and sign them in.

        Clears any business/book selection left by a previous session.

        Raises:
            DuplicateUserError: If the email or mobile is already registered
        """
        if not password:
            raise AuthenticationError("Password is required")
        email = email.strip().lower()
        mobile = mobile.strip() if mobile else None

        conditions = [Eq("email", email)]
        if mobile:
            conditions.append(Eq("mobile", mobile))
        existing = await self._store.query(Select("users", Or(*conditions), limit=1))
        if existing:
            raise DuplicateUserError("User with this email or mobile already exists")

        now = self._store.now()
        user = User(
            id=self._store.generate_id(),
            email=email,
            mobile=mobile,
            password_hash=hash_password(password),
            created_at=now,
            updated_at=now,
        )
        await self._store.execute(Insert("users", user.to_row()))

        await self._clear_selection()
        await self._start_session(user)
        logger.info("user_registered", user_id=user.id)
        return user

    async def login(self, identifier: str, password: str) -> User:
        """
        Sign in with email or mobile plus password.

        Raises:
            AuthenticationError: On unknown user or wrong password
        """
        identifier = identifier.strip()
        rows = await self._store.query(Select(
            "users",
            Or(Eq("email", identifier.lower()), Eq("mobile", identifier)),
            limit=1,
        ))
        if not rows:
            raise AuthenticationError("Invalid credentials")
        user = User.model_validate(rows[0])
        if not user.password_hash or not verify_password(password, user.password_hash):
            logger.warning("login_rejected", user_id=user.id)
            raise AuthenticationError("Invalid credentials")

        user = await self._touch(user)
        await self._start_session(user)
        logger.info("user_logged_in", user_id=user.id)
        return user

    async def login_federated(self, identity: FederatedIdentity) -> User:
        """
        Sign in with an external identity.

        Matches by provider uid, then links an existing account by email,
        otherwise creates a new user without a password.
        """
        rows = await self._store.query(Select("users", Eq("firebase_uid", identity.uid), limit=1))
        if rows:
            user = await self._touch(User.model_validate(rows[0]))
        else:
            user = await self.find_by_email(identity.email)
            if user is not None:
                now = self._store.now()
                await self._store.execute(Update(
                    "users",
                    {"firebase_uid": identity.uid, "updated_at": now},
                    Eq("id", user.id),
                ))
                user = user.model_copy(update={"firebase_uid": identity.uid, "updated_at": now})
            else:
                now = self._store.now()
                user = User(
                    id=self._store.generate_id(),
                    email=identity.email,
                    firebase_uid=identity.uid,
                    created_at=now,
                    updated_at=now,
                )
                await self._store.execute(Insert("users", user.to_row()))
                logger.info("user_registered", user_id=user.id, federated=True)

        await self._start_session(user)
        return user

    async def logout(self) -> None:
        """End the session and forget the business/book selection."""
        await self._preferences.remove(PreferenceKey.USER_SESSION)
        await self._clear_selection()
        logger.info("user_logged_out")

    async def update_profile(
        self,
        email: Optional[str] = None,
        mobile: Optional[str] = None,
    ) -> User:
        """
        Change the signed-in user's email and/or mobile.

        Raises:
            DuplicateUserError: If the new email or mobile belongs to someone else
        """
        user = await self.require_user()
        changes: dict = {}
        if email is not None:
            email = email.strip().lower()
            other = await self.find_by_email(email)
            if other is not None and other.id != user.id:
                raise DuplicateUserError("Email already in use")
            changes["email"] = email
        if mobile is not None:
            mobile = mobile.strip() or None
            if mobile:
                other = await self.find_by_mobile(mobile)
                if other is not None and other.id != user.id:
                    raise DuplicateUserError("Mobile already in use")
            changes["mobile"] = mobile
        if not changes:
            return user

        changes["updated_at"] = self._store.now()
        result = await self._store.execute(Update("users", changes, Eq("id", user.id)))
        if result.rows_affected == 0:
            raise NotFoundError(f"User not found: {user.id}")
        return User.model_validate({**user.model_dump(), **changes})

    # -------------------------------------------------------------------------

    async def _touch(self, user: User) -> User:
        now = self._store.now()
        await self._store.execute(Update("users", {"updated_at": now}, Eq("id", user.id)))
        return user.model_copy(update={"updated_at": now})

    async def _start_session(self, user: User) -> None:
        await self._preferences.set(PreferenceKey.USER_SESSION, user.id)

    async def _clear_selection(self) -> None:
        await self._preferences.remove_many(
            PreferenceKey.CURRENT_BUSINESS_ID,
            PreferenceKey.CURRENT_BOOK_ID,
        )
