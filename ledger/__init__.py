"""
Wallet Ledger for TapFeed

This module provides:
- Accounts with a USDT balance, sign-up/sign-in and sessions
- Deposit, withdrawal request and admin settlement flows
- Post sponsorship priced from the configured cost per 100k views
- Append-only transaction log
- Pluggable storage: in-memory, JSON file, SQLite
"""

from .models import (
    Account,
    Post,
    PricingSettings,
    Transaction,
    TransactionStatus,
    TransactionType,
    UserRole,
)
from .accounts import AccountService
from .service import LedgerService
from .storage import InMemoryStorage, JsonFileStorage, SqliteStorage, Storage

__all__ = [
    "Account",
    "Post",
    "PricingSettings",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "UserRole",
    "AccountService",
    "LedgerService",
    "Storage",
    "InMemoryStorage",
    "JsonFileStorage",
    "SqliteStorage",
]
