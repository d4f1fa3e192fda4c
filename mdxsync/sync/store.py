"""
SQLite content store for articles and settings.

Two keyed tables:
- ``articles``, unique by ``slug``
- ``settings``, unique by ``key``

Writes go through upserts: insert when absent, otherwise overwrite every
synced column and refresh ``updated_at``, leaving ``created_at`` untouched.
Each call opens its own connection and commits on its own, so records
become visible item by item and concurrent writers resolve by commit order.
"""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import AccessLevel, ArticleStatus
from .error_tracker import StoreError, StoreUnavailableError
from .logging_manager import get_logger


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ArticleRecord:
    slug: str
    title: str
    description: str = ''
    body: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: str = ArticleStatus.DRAFT.value
    access_level: str = AccessLevel.PUBLIC.value
    source_path: Optional[str] = None
    fingerprint: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'slug': self.slug,
            'title': self.title,
            'description': self.description,
            'body': self.body,
            'metadata': self.metadata,
            'status': self.status,
            'accessLevel': self.access_level,
            'sourcePath': self.source_path,
            'fingerprint': self.fingerprint,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }


@dataclass
class SettingRecord:
    key: str
    value: Any
    source_path: Optional[str] = None
    fingerprint: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'value': self.value,
            'sourcePath': self.source_path,
            'fingerprint': self.fingerprint,
            'updatedAt': self.updated_at,
        }


def _is_contention(error: sqlite3.OperationalError) -> bool:
    """Lock or busy errors from a concurrent writer, as opposed to an unusable database."""
    message = str(error).lower()
    return "locked" in message or "busy" in message


_ARTICLE_COLUMNS = "slug, title, description, body, metadata_json, status, access_level, source_path, fingerprint, created_at, updated_at"


class ContentStore:
    """
    Durable store for synced content.

    Only the sync orchestrator writes; the API and CLI read.
    """

    def __init__(self, database_path: str):
        self.database_path = Path(database_path)
        self.logger = get_logger(__name__)
        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot create store directory {self.database_path.parent}: {e}")
        self._init_schema()

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(self.database_path, timeout=30)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open content store {self.database_path}: {e}",
                                        recovery_suggestion="Check the database path and its permissions")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise StoreError(f"Constraint violation: {e}")
        except sqlite3.OperationalError as e:
            conn.rollback()
            if _is_contention(e):
                raise StoreError(f"Content store busy: {e}",
                                 recovery_suggestion="Retry once the concurrent writer has committed")
            raise StoreUnavailableError(f"Content store unavailable: {e}")
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Content store error: {e}")
        finally:
            conn.close()

    def _init_schema(self):
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    slug TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    body TEXT NOT NULL DEFAULT '',
                    metadata_json TEXT NOT NULL DEFAULT '{}',
                    status TEXT NOT NULL DEFAULT 'draft',
                    access_level TEXT NOT NULL DEFAULT 'public',
                    source_path TEXT,
                    fingerprint TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL UNIQUE,
                    value TEXT NOT NULL,
                    source_path TEXT,
                    fingerprint TEXT,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_status ON articles(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_source_path ON articles(source_path)")

    # Articles

    def upsert_article(self, record: ArticleRecord, now: Optional[str] = None) -> ArticleRecord:
        """
        Insert or update an article by slug and return the stored record.
        """
        now = now or utc_now()
        with self._connect() as conn:
            conn.execute(f"""
                INSERT INTO articles ({_ARTICLE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    body = excluded.body,
                    metadata_json = excluded.metadata_json,
                    status = excluded.status,
                    access_level = excluded.access_level,
                    source_path = excluded.source_path,
                    fingerprint = excluded.fingerprint,
                    updated_at = excluded.updated_at
            """, (
                record.slug,
                record.title,
                record.description,
                record.body,
                json.dumps(record.metadata, ensure_ascii=False),
                record.status,
                record.access_level,
                record.source_path,
                record.fingerprint,
                now,
                now,
            ))
            row = conn.execute(f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE slug = ?", (record.slug,)).fetchone()
        self.logger.debug(f"Upserted article {record.slug}", extra={'details': {'slug': record.slug, 'path': record.source_path}})
        return self._row_to_article(row)

    def get_article(self, slug: str) -> Optional[ArticleRecord]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE slug = ?", (slug,)).fetchone()
        return self._row_to_article(row) if row else None

    def list_articles(self, status: Optional[str] = None) -> List[ArticleRecord]:
        query = f"SELECT {_ARTICLE_COLUMNS} FROM articles"
        params: tuple = ()
        if status:
            query += " WHERE status = ?"
            params = (status,)
        query += " ORDER BY slug"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_article(row) for row in rows]

    @staticmethod
    def _row_to_article(row) -> ArticleRecord:
        return ArticleRecord(
            slug=row['slug'],
            title=row['title'],
            description=row['description'],
            body=row['body'],
            metadata=json.loads(row['metadata_json']),
            status=row['status'],
            access_level=row['access_level'],
            source_path=row['source_path'],
            fingerprint=row['fingerprint'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    # Settings

    def upsert_setting(self, record: SettingRecord, now: Optional[str] = None) -> SettingRecord:
        now = now or utc_now()
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO settings (key, value, source_path, fingerprint, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    source_path = excluded.source_path,
                    fingerprint = excluded.fingerprint,
                    updated_at = excluded.updated_at
            """, (
                record.key,
                json.dumps(record.value, ensure_ascii=False),
                record.source_path,
                record.fingerprint,
                now,
            ))
        self.logger.debug(f"Upserted setting {record.key}", extra={'details': {'key': record.key, 'path': record.source_path}})
        return SettingRecord(key=record.key, value=record.value, source_path=record.source_path,
                             fingerprint=record.fingerprint, updated_at=now)

    def get_setting(self, key: str) -> Optional[SettingRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT key, value, source_path, fingerprint, updated_at FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return self._row_to_setting(row) if row else None

    def list_settings(self) -> List[SettingRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key, value, source_path, fingerprint, updated_at FROM settings ORDER BY key"
            ).fetchall()
        return [self._row_to_setting(row) for row in rows]

    @staticmethod
    def _row_to_setting(row) -> SettingRecord:
        return SettingRecord(
            key=row['key'],
            value=json.loads(row['value']),
            source_path=row['source_path'],
            fingerprint=row['fingerprint'],
            updated_at=row['updated_at'],
        )

    # Sync bookkeeping

    def get_fingerprints(self) -> Dict[str, str]:
        """Map of source path to the fingerprint last applied from it."""
        fingerprints: Dict[str, str] = {}
        with self._connect() as conn:
            for table in ('articles', 'settings'):
                rows = conn.execute(
                    f"SELECT source_path, fingerprint FROM {table} WHERE source_path IS NOT NULL AND fingerprint IS NOT NULL"
                ).fetchall()
                for row in rows:
                    fingerprints[row['source_path']] = row['fingerprint']
        return fingerprints

    def get_statistics(self) -> Dict[str, Any]:
        with self._connect() as conn:
            total_articles = conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0]
            by_status = {
                row['status']: row['n']
                for row in conn.execute("SELECT status, COUNT(*) AS n FROM articles GROUP BY status")
            }
            total_settings = conn.execute("SELECT COUNT(*) FROM settings").fetchone()[0]
            last_update = conn.execute(
                "SELECT MAX(updated_at) FROM (SELECT updated_at FROM articles UNION ALL SELECT updated_at FROM settings)"
            ).fetchone()[0]
        return {
            'total_articles': total_articles,
            'articles_by_status': by_status,
            'total_settings': total_settings,
            'last_updated_at': last_update,
            'database_path': str(self.database_path),
        }
