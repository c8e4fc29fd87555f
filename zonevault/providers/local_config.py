"""
Local Config Store implementations.

JsonLocalConfigStore keeps one JSON document per resource on disk.
PostgresLocalConfigStore keeps the security_configs table in PostgreSQL.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Mapping

from ..errors import ProviderError, ProviderErrorKind
from ..snapshot.models import safe_name
from .base import LocalConfigStore


class JsonLocalConfigStore(LocalConfigStore):
    """One `<resource>.json` file per resource under a directory."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, resource_id: str) -> Path:
        return self.directory / f"{safe_name(resource_id)}.json"

    def load(self, resource_id: str) -> Dict[str, Any]:
        path = self._path(resource_id)
        if not path.exists():
            return {}
        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ProviderError(f"Local config for {resource_id} is corrupt: {e}",
                                kind=ProviderErrorKind.INVALID) from e
        except OSError as e:
            raise ProviderError(f"Cannot read local config for {resource_id}: {e}") from e
        if not isinstance(data, dict):
            raise ProviderError(f"Local config for {resource_id} is not an object",
                                kind=ProviderErrorKind.INVALID)
        return data

    def save(self, resource_id: str, config: Mapping[str, Any]) -> None:
        path = self._path(resource_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(dict(config), f, indent=2, default=str)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise ProviderError(f"Cannot write local config for {resource_id}: {e}") from e


class PostgresLocalConfigStore(LocalConfigStore):
    """
    Local config kept in the `security_configs` table.

    Schema:
        zone_id         TEXT PRIMARY KEY
        config          JSONB NOT NULL
        config_version  INTEGER NOT NULL DEFAULT 1
        updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
    """

    TABLE = "security_configs"

    def __init__(self, conn=None, dsn=None):
        """
        Initialize the store.

        Args:
            conn: psycopg2 database connection
            dsn: Connection string, used when no connection is given
        """
        if conn is None:
            if not dsn:
                raise ValueError("PostgresLocalConfigStore needs a connection or a DSN")
            import psycopg2
            try:
                conn = psycopg2.connect(dsn)
            except psycopg2.Error as e:
                raise ProviderError(f"Cannot connect to local config database: {e}") from e
        self.conn = conn

    def ensure_table(self) -> None:
        """Create the table if it does not exist."""
        with self._transaction() as cur:
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    zone_id TEXT PRIMARY KEY,
                    config JSONB NOT NULL,
                    config_version INTEGER NOT NULL DEFAULT 1,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)

    def load(self, resource_id: str) -> Dict[str, Any]:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT config FROM {self.TABLE} WHERE zone_id = %s",
                (resource_id,),
            )
            row = cur.fetchone()
        if row is None:
            return {}
        config = row[0]
        if isinstance(config, str):
            config = json.loads(config)
        return dict(config)

    def save(self, resource_id: str, config: Mapping[str, Any]) -> None:
        from psycopg2.extras import Json

        with self._transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO {self.TABLE} (zone_id, config, config_version, updated_at)
                VALUES (%s, %s, 1, now())
                ON CONFLICT (zone_id) DO UPDATE
                SET config = EXCLUDED.config,
                    config_version = {self.TABLE}.config_version + 1,
                    updated_at = now()
                """,
                (resource_id, Json(dict(config))),
            )

    def _transaction(self):
        return _Transaction(self.conn)


class _Transaction:
    """Cursor scoped to one commit/rollback; psycopg2 errors become ProviderError."""

    def __init__(self, conn):
        self.conn = conn
        self.cur = None

    def __enter__(self):
        self.cur = self.conn.cursor()
        return self.cur

    def __exit__(self, exc_type, exc, tb):
        import psycopg2

        self.cur.close()
        if exc_type is None:
            self.conn.commit()
            return False
        self.conn.rollback()
        if isinstance(exc, psycopg2.OperationalError):
            raise ProviderError(f"Local config database unavailable: {exc}") from exc
        if isinstance(exc, psycopg2.Error):
            raise ProviderError(f"Local config query failed: {exc}",
                                kind=ProviderErrorKind.INVALID) from exc
        return False
