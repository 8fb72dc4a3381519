"""SQLite storage for accounts and their platform credentials.

Database: data/pulse.db (WAL mode)
Tables: accounts, credentials
"""
import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..schemas.analytics import Account, SourceCredential


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_database(db_path: str | Path) -> None:
    """Initialize account database with schema.

    Creates tables if they don't exist.
    Enables WAL mode for concurrent reads.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect(db_path)

    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        current_version = cursor.fetchone()[0] or 0

        if current_version < SCHEMA_VERSION:
            _apply_schema(conn)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info("Account schema initialized (version %s)", SCHEMA_VERSION)
        else:
            logger.debug("Account schema up to date (version %s)", current_version)

    finally:
        conn.close()


def _apply_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            tier TEXT NOT NULL DEFAULT 'FREE',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS credentials (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            platform TEXT NOT NULL,
            access_token TEXT NOT NULL,
            refresh_token TEXT,
            auxiliary_json TEXT NOT NULL DEFAULT '{}',
            expires_at TEXT,
            position INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(account_id, platform)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_credentials_account
        ON credentials(account_id, position)
        """
    )


def save_account(conn: sqlite3.Connection, account: Account) -> None:
    """Insert or replace an account and its full credential list.

    Credentials not in ``account.credentials`` are removed.

    Args:
        conn: SQLite connection
        account: Account to persist
    """
    conn.execute(
        """
        INSERT INTO accounts (id, tier)
        VALUES (?, ?)
        ON CONFLICT(id)
        DO UPDATE SET
            tier=excluded.tier,
            updated_at=CURRENT_TIMESTAMP
        """,
        (account.id, account.tier.value),
    )
    conn.execute("DELETE FROM credentials WHERE account_id=?", (account.id,))

    for position, credential in enumerate(account.credentials):
        conn.execute(
            """
            INSERT INTO credentials (
                id, account_id, platform, access_token, refresh_token,
                auxiliary_json, expires_at, position
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                credential.id,
                account.id,
                credential.platform.value,
                credential.access_token,
                credential.refresh_token,
                json.dumps(credential.auxiliary, separators=(",", ":")),
                credential.expires_at.isoformat() if credential.expires_at else None,
                position,
            ),
        )

    conn.commit()
    logger.info(
        "Saved account %s with %s credentials", account.id, len(account.credentials)
    )


def load_account(conn: sqlite3.Connection, account_id: str) -> Optional[Account]:
    """Load an account with credentials in their connection order.

    Args:
        conn: SQLite connection
        account_id: Account identifier

    Returns:
        Account, or None if it does not exist
    """
    row = conn.execute(
        "SELECT id, tier FROM accounts WHERE id=?", (account_id,)
    ).fetchone()
    if row is None:
        return None

    cursor = conn.execute(
        """
        SELECT id, platform, access_token, refresh_token, auxiliary_json, expires_at
        FROM credentials
        WHERE account_id=?
        ORDER BY position
        """,
        (account_id,),
    )

    credentials = [
        SourceCredential(
            id=cred_id,
            platform=platform,
            access_token=access_token,
            refresh_token=refresh_token,
            auxiliary=json.loads(auxiliary_json or "{}"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )
        for cred_id, platform, access_token, refresh_token, auxiliary_json, expires_at in cursor
    ]

    return Account(id=row[0], tier=row[1], credentials=credentials)


def update_credential_token(conn: sqlite3.Connection, credential: SourceCredential) -> bool:
    """Write back a refreshed token.

    Args:
        conn: SQLite connection
        credential: Credential carrying the new token and expiry

    Returns:
        True if a stored credential was updated
    """
    cursor = conn.execute(
        """
        UPDATE credentials
        SET access_token=?,
            refresh_token=?,
            expires_at=?,
            updated_at=CURRENT_TIMESTAMP
        WHERE id=?
        """,
        (
            credential.access_token,
            credential.refresh_token,
            credential.expires_at.isoformat() if credential.expires_at else None,
            credential.id,
        ),
    )
    conn.commit()

    if cursor.rowcount == 0:
        logger.warning("Refreshed credential %s not found in store", credential.id)
        return False
    return True


class AccountStore:
    """Connection-per-call wrapper used by the API layer and refresh hook."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        init_database(self.db_path)

    def load(self, account_id: str) -> Optional[Account]:
        conn = connect(self.db_path)
        try:
            return load_account(conn, account_id)
        finally:
            conn.close()

    def save(self, account: Account) -> None:
        conn = connect(self.db_path)
        try:
            save_account(conn, account)
        finally:
            conn.close()

    def update_credential(self, credential: SourceCredential) -> None:
        conn = connect(self.db_path)
        try:
            update_credential_token(conn, credential)
        finally:
            conn.close()
