"""
Entity Repositories Package

Typed CRUD over the local store. Every repository except users is
scoped by the context selector it is constructed with.
"""

from cashlia.repositories.users import UserRepository
from cashlia.repositories.context import ContextSelector
from cashlia.repositories.base import LookupRepository, ScopedRepository
from cashlia.repositories.businesses import BusinessRepository, BusinessTeamRepository
from cashlia.repositories.books import BookRepository
from cashlia.repositories.parties import PartyRepository
from cashlia.repositories.categories import CategoryRepository
from cashlia.repositories.entries import EntryRepository
from cashlia.repositories.invitations import InvitationLink, InvitationService

__all__ = [
    "BookRepository",
    "BusinessRepository",
    "BusinessTeamRepository",
    "CategoryRepository",
    "ContextSelector",
    "EntryRepository",
    "InvitationLink",
    "InvitationService",
    "LookupRepository",
    "PartyRepository",
    "ScopedRepository",
    "UserRepository",
]
