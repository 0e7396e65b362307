"""Accounts: entity, password security and provisioning."""

from .models import AUTH_TABLES_CQL, Account
from .service import AccountService, DatabaseError, UsernameTakenError


__all__ = [
    "AUTH_TABLES_CQL",
    "Account",
    "AccountService",
    "DatabaseError",
    "UsernameTakenError",
]
