"""
Database Persistence Layer
Handles accounts (linked analytics users + OAuth tokens) and registered
badge properties in PostgreSQL
"""

import logging
from typing import List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor, execute_batch
from psycopg2.pool import ThreadedConnectionPool

from analytics_badge.auth.token_model import Account
from analytics_badge.errors import PersistenceError
from analytics_badge.models import Property

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS accounts (
        username      TEXT PRIMARY KEY,
        access_token  TEXT NOT NULL DEFAULT '',
        refresh_token TEXT NOT NULL DEFAULT '',
        expiry        TIMESTAMP,
        updated_at    TIMESTAMP NOT NULL DEFAULT NOW()
    );
    CREATE TABLE IF NOT EXISTS properties (
        id               TEXT PRIMARY KEY,
        account_username TEXT NOT NULL REFERENCES accounts (username),
        profile          TEXT NOT NULL,
        updated_at       TIMESTAMP NOT NULL DEFAULT NOW()
    );
    CREATE INDEX IF NOT EXISTS properties_account_username_idx
        ON properties (account_username);
"""

_pool: Optional[ThreadedConnectionPool] = None


def init_db_pool(db_url: str, minconn: int = 1, maxconn: int = 10) -> None:
    """Create the process-wide connection pool."""
    global _pool
    if _pool is not None:
        return
    try:
        _pool = ThreadedConnectionPool(minconn, maxconn, db_url)
        logger.info(f"[DB] Connection pool ready (min={minconn}, max={maxconn})")
    except psycopg2.Error as e:
        logger.error(f"[DB] Connection pool failed: {e}")
        raise PersistenceError(f"Database connection failed: {e}") from e


def close_db_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("[DB] Connection pool closed")


def get_db():
    """
    FastAPI dependency: one DatabasePersistence per request.
    The connection is only borrowed on first use and always returned.
    """
    db = DatabasePersistence()
    try:
        yield db
    finally:
        db.disconnect()


class DatabasePersistence:
    """Handles database operations for accounts and properties"""

    def __init__(self, pool: Optional[ThreadedConnectionPool] = None):
        self.pool = pool
        self.connection = None
        self.cursor = None

    def connect(self) -> None:
        """
        Borrow a connection from the pool
        Raises explicit error if the pool is missing or exhausted
        """
        pool = self.pool or _pool
        if pool is None:
            raise PersistenceError("Database pool not initialised; call init_db_pool() first")
        try:
            self.connection = pool.getconn()
            self.cursor = self.connection.cursor(cursor_factory=RealDictCursor)
            self.pool = pool
        except psycopg2.Error as e:
            logger.error(f"[DB] Connection failed: {e}")
            raise PersistenceError(f"Database connection failed: {e}") from e

    def disconnect(self) -> None:
        """Return the connection to the pool"""
        if self.cursor:
            self.cursor.close()
            self.cursor = None
        if self.connection:
            self.pool.putconn(self.connection)
            self.connection = None

    def _require_cursor(self):
        if not self.connection or not self.cursor:
            self.connect()
        return self.cursor

    def ensure_schema(self) -> None:
        cursor = self._require_cursor()
        try:
            cursor.execute(SCHEMA_SQL)
            self.connection.commit()
            logger.info("[DB] Schema verified")
        except psycopg2.Error as e:
            self.connection.rollback()
            raise PersistenceError(f"Database error creating schema: {e}") from e

    # ========================================
    # ACCOUNT & TOKEN MANAGEMENT
    # ========================================

    def fetch_account(self, username: str) -> Optional[Account]:
        """
        Fetch an account and its stored token.

        Returns:
            Account instance, or None if not found
        """
        cursor = self._require_cursor()
        try:
            cursor.execute("""
                SELECT username, access_token, refresh_token, expiry
                FROM accounts
                WHERE username = %s
            """, (username,))
            row = cursor.fetchone()
            if not row:
                return None
            return Account(
                username=row['username'],
                access_token=row['access_token'] or "",
                refresh_token=row['refresh_token'] or "",
                expiry=row['expiry'],
            )
        except psycopg2.Error as e:
            logger.error(f"[DB] Failed to fetch account {username}: {e}")
            raise PersistenceError(f"Database error fetching account: {e}") from e

    def upsert_account(self, account: Account) -> None:
        """
        Store or replace an account record keyed by username.
        """
        if not account.username:
            raise PersistenceError("Refusing to persist an account without a username")

        cursor = self._require_cursor()
        try:
            cursor.execute("""
                INSERT INTO accounts (username, access_token, refresh_token, expiry, updated_at)
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (username) DO UPDATE SET
                    access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    expiry = EXCLUDED.expiry,
                    updated_at = NOW()
            """, (
                account.username,
                account.access_token,
                account.refresh_token,
                account.expiry,
            ))
            self.connection.commit()
            logger.info(f"[DB] Account upserted: {account.username}")
        except psycopg2.Error as e:
            self.connection.rollback()
            logger.error(f"[DB] Failed to upsert account {account.username}: {e}")
            raise PersistenceError(f"Database error upserting account: {e}") from e

    # ========================================
    # PROPERTIES
    # ========================================

    def fetch_property(self, property_id: str) -> Optional[Property]:
        cursor = self._require_cursor()
        try:
            cursor.execute("""
                SELECT id, account_username, profile
                FROM properties
                WHERE id = %s
            """, (property_id,))
            row = cursor.fetchone()
            if not row:
                return None
            return Property(id=row['id'], account=row['account_username'], profile=row['profile'])
        except psycopg2.Error as e:
            logger.error(f"[DB] Failed to fetch property {property_id}: {e}")
            raise PersistenceError(f"Database error fetching property: {e}") from e

    def upsert_properties(self, properties: List[Property]) -> int:
        """
        Insert or overwrite a batch of properties in one transaction.
        Property ids are global: registering an existing id moves it to the new account.

        Returns:
            Number of properties written
        """
        if not properties:
            return 0

        cursor = self._require_cursor()
        try:
            execute_batch(cursor, """
                INSERT INTO properties (id, account_username, profile, updated_at)
                VALUES (%s, %s, %s, NOW())
                ON CONFLICT (id) DO UPDATE SET
                    account_username = EXCLUDED.account_username,
                    profile = EXCLUDED.profile,
                    updated_at = NOW()
            """, [(p.id, p.account, p.profile) for p in properties])
            self.connection.commit()
            logger.info(f"[DB] Upserted {len(properties)} properties")
            return len(properties)
        except psycopg2.Error as e:
            self.connection.rollback()
            logger.error(f"[DB] Failed to upsert properties: {e}")
            raise PersistenceError(f"Database error upserting properties: {e}") from e

    def fetch_properties_for_account(self, username: str) -> List[Property]:
        cursor = self._require_cursor()
        try:
            cursor.execute("""
                SELECT id, account_username, profile
                FROM properties
                WHERE account_username = %s
                ORDER BY id
            """, (username,))
            return [
                Property(id=row['id'], account=row['account_username'], profile=row['profile'])
                for row in cursor.fetchall()
            ]
        except psycopg2.Error as e:
            logger.error(f"[DB] Failed to fetch properties for {username}: {e}")
            raise PersistenceError(f"Database error fetching properties: {e}") from e
