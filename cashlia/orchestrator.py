"""
Cashbook Orchestrator

This module ties together all the components of the data layer:
1. Local store (SQLite, or the JSON document store without sqlite3)
2. Preference store (session, selection, sync method, keys)
3. Repositories sharing one context selector
4. Remote adapters and the sync engine

DESIGN DECISION: Everything is wired here and nowhere else. Components
receive their collaborators through constructors, so tests build the
same graph with in-memory preferences and fake remotes.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from cashlia.audit import ActivityTrail, configure_logging
from cashlia.config import Settings, get_settings
from cashlia.repositories import (
    BookRepository,
    BusinessRepository,
    BusinessTeamRepository,
    CategoryRepository,
    ContextSelector,
    EntryRepository,
    InvitationService,
    PartyRepository,
    UserRepository,
)
from cashlia.security import PayloadCipher
from cashlia.store import (
    JsonFilePreferenceStore,
    LocalStore,
    PreferenceStore,
    create_local_store,
)
from cashlia.sync import (
    DocumentStoreAdapter,
    DriveAdapter,
    GoogleDriveAdapter,
    GoogleSheetsClient,
    SheetsDocumentStore,
    SyncEngine,
)


logger = structlog.get_logger(__name__)


@dataclass
class Cashbook:
    """The wired data layer of one device."""

    settings: Settings
    store: LocalStore
    preferences: PreferenceStore
    users: UserRepository
    context: ContextSelector
    businesses: BusinessRepository
    team: BusinessTeamRepository
    books: BookRepository
    parties: PartyRepository
    categories: CategoryRepository
    entries: EntryRepository
    activity: ActivityTrail
    invitations: InvitationService
    cipher: PayloadCipher
    sync: SyncEngine

    async def logout(self) -> None:
        """Sign out, stop subscriptions and forget the selection."""
        self.sync.stop()
        await self.users.logout()

    async def close(self) -> None:
        self.sync.stop()
        await self.store.close()


async def open_cashbook(
    settings: Optional[Settings] = None,
    store: Optional[LocalStore] = None,
    preferences: Optional[PreferenceStore] = None,
    drive: Optional[DriveAdapter] = None,
    document_store: Optional[DocumentStoreAdapter] = None,
    configure_logs: bool = True,
) -> Cashbook:
    """
    Build and initialize all components.

    Args:
        settings: Settings to use (default: environment)
        store: Local store to use instead of the configured one
        preferences: Preference store to use instead of the JSON file
        drive: Object-store adapter (default: Google Drive)
        document_store: Document-store adapter (default: Google Sheets)
        configure_logs: Whether to configure structlog

    Returns:
        An initialized Cashbook
    """
    settings = settings or get_settings()
    if configure_logs:
        configure_logging(settings.app.log_level)

    store = store or create_local_store(settings.store)
    await store.initialize()
    preferences = preferences or JsonFilePreferenceStore(settings.store.preferences_path)

    users = UserRepository(store, preferences)
    context = ContextSelector(store, preferences, users)
    activity = ActivityTrail(store)
    parties = PartyRepository(store, context)
    categories = CategoryRepository(store, context)
    entries = EntryRepository(
        store,
        context,
        parties,
        categories,
        activity,
        currency_symbol=settings.app.currency_symbol,
        tz=settings.app.tzinfo,
    )
    invitations = InvitationService(
        store,
        preferences,
        context,
        scheme=settings.app.invite_scheme,
        ttl_days=settings.app.invitation_ttl_days,
    )

    cipher = PayloadCipher(preferences)
    drive = drive or GoogleDriveAdapter(preferences, cipher, settings.google_drive)
    document_store = document_store or SheetsDocumentStore(
        cipher,
        GoogleSheetsClient(settings.google_sheets),
        poll_interval=settings.sync.poll_interval_seconds,
    )
    engine = SyncEngine(store, preferences, drive, document_store, settings.sync)

    logger.info(
        "cashbook_opened",
        store=type(store).__name__,
        environment=settings.app.app_environment,
    )

    return Cashbook(
        settings=settings,
        store=store,
        preferences=preferences,
        users=users,
        context=context,
        businesses=BusinessRepository(store, context),
        team=BusinessTeamRepository(store, context),
        books=BookRepository(store, context),
        parties=parties,
        categories=categories,
        entries=entries,
        activity=activity,
        invitations=invitations,
        cipher=cipher,
        sync=engine,
    )
