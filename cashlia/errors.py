"""
Error Taxonomy

DESIGN DECISION: Callers branch on the error CATEGORY, not on messages.
Every failure the data layer raises on purpose is a CashliaError subclass:

- NotFoundError: a mutator targeted a row that is missing or outside the
  current business/book. Read calls (get_by_id) return None instead.
- ValidationError: the caller asked for something the data forbids
  (duplicate user, deleting a referenced party, nothing selected).
- AuthenticationError: no signed-in user, or bad credentials. Never retried.
- ConfigurationError: sync method unset or remote not authenticated.
  Fatal until the user acts.
- TransientSyncError: network/remote failure. The record is marked
  'error' and retried on the next sync.
- DecryptionError: a remote payload could not be decrypted. Per record,
  skipped and logged.
"""


class CashliaError(Exception):
    """Base exception for the data layer."""
    pass


class NotFoundError(CashliaError):
    """Entity missing or not visible in the current context."""
    pass


class ValidationError(CashliaError):
    """Operation rejected by a data rule."""
    pass


class ReferencedRecordError(ValidationError):
    """Attempted to hard-delete a row that entries still reference."""
    pass


class DuplicateUserError(ValidationError):
    """Registration with an email or mobile that is already taken."""
    pass


class SelectionRequiredError(ValidationError):
    """A scoped create was attempted with no business/book selected."""
    pass


class AuthenticationError(CashliaError):
    """No signed-in user, or credentials rejected."""
    pass


class ConfigurationError(CashliaError):
    """Sync or remote backend is not configured."""
    pass


class SyncNotConfiguredError(ConfigurationError):
    """Sync method is 'none' or its adapter is unavailable."""
    pass


class TransientSyncError(CashliaError):
    """Recoverable remote failure; the record stays eligible for retry."""
    pass


class DecryptionError(CashliaError):
    """Payload could not be decrypted with the local key."""
    pass


class InvitationNotFoundError(NotFoundError):
    """Invitation token unknown, expired or already consumed."""
    pass
