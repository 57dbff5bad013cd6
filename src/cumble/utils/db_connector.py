import json
import logging
from typing import Dict, Any, List, Optional

import psycopg2
from psycopg2.extras import Json

from ..config.settings import CumbleSettings, settings as default_settings
from ..errors import PersistenceError
from .profile_store import strip_primary_id

logger = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS profiles (
        id SERIAL UNIQUE,
        firebase_id TEXT PRIMARY KEY,
        email TEXT,
        profile JSONB NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
"""


class PostgresProfileStore:
    """ProfileStore backed by a single `profiles` table with a JSONB document."""

    def __init__(self, settings: Optional[CumbleSettings] = None, conn=None):
        """Connects using DB_* settings unless a connection is supplied."""
        settings = settings or default_settings
        if conn is not None:
            self.conn = conn
        else:
            try:
                self.conn = psycopg2.connect(
                    dbname=settings.DB_NAME,
                    user=settings.DB_USER,
                    password=settings.DB_PASSWORD,
                    host=settings.DB_HOST,
                    port=settings.DB_PORT,
                )
            except psycopg2.Error as e:
                raise PersistenceError(f"Database connection failed: {e}") from e
            logger.info("Connected to the profile database")

    def ensure_schema(self):
        try:
            with self.conn.cursor() as cur:
                cur.execute(CREATE_TABLE_SQL)
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Failed to create profiles table: {e}") from e

    @staticmethod
    def _to_doc(row) -> Dict[str, Any]:
        row_id, profile = row
        if isinstance(profile, str):
            profile = json.loads(profile)
        doc = dict(profile)
        doc["_id"] = str(row_id)
        return doc

    def _fetch_one(self, sql: str, params: tuple) -> Optional[Dict[str, Any]]:
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Profile lookup failed: {e}") from e
        return self._to_doc(row) if row else None

    def get_by_firebase_id(self, firebase_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            "SELECT id, profile FROM profiles WHERE firebase_id = %s;", (firebase_id,)
        )

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            "SELECT id, profile FROM profiles WHERE lower(email) = lower(%s) LIMIT 1;",
            (email,),
        )

    def list_profiles(self) -> List[Dict[str, Any]]:
        try:
            with self.conn.cursor() as cur:
                cur.execute("SELECT id, profile FROM profiles ORDER BY id;")
                rows = cur.fetchall()
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Profile listing failed: {e}") from e
        return [self._to_doc(row) for row in rows]

    def upsert(self, firebase_id: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        doc = strip_primary_id(profile)
        doc["firebase_id"] = firebase_id

        sql = """
            INSERT INTO profiles (firebase_id, email, profile)
            VALUES (%s, %s, %s)
            ON CONFLICT (firebase_id) DO UPDATE SET
                email = COALESCE(EXCLUDED.email, profiles.email),
                profile = profiles.profile || EXCLUDED.profile,
                updated_at = CURRENT_TIMESTAMP
            RETURNING id, profile;
        """
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, (firebase_id, doc.get("email"), Json(doc)))
                row = cur.fetchone()
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            logger.error(f"Failed to save profile for {firebase_id}: {e}")
            raise PersistenceError(f"Error saving profile: {e}") from e

        saved = self._to_doc(row)
        logger.info(f"Saved profile {saved['_id']} for {firebase_id}")
        return saved

    def close(self):
        if self.conn:
            self.conn.close()
            logger.info("Database connection closed")
