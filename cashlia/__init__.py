"""
Cashlia Core - Local-First Ledger Data Layer

The storage, context and synchronization core of a multi-business
cash-in/cash-out ledger. UI layers call into this package through
the repositories, the context selector and the sync engine.

DESIGN PRINCIPLES:
1. The local store is the source of truth
2. Every read is scoped to the current business/book
3. Every local write is marked pending until a remote accepts it
4. Remote backends are swappable
5. Nothing leaves the device unencrypted
"""

__version__ = "1.0.0"
__author__ = "Cashlia Team"
