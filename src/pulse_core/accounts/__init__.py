"""Account and credential persistence."""
from .store import (
    AccountStore,
    init_database,
    load_account,
    save_account,
    update_credential_token,
)

__all__ = [
    "AccountStore",
    "init_database",
    "load_account",
    "save_account",
    "update_credential_token",
]
