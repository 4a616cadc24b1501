from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MIGRATIONS_ROOT = Path(__file__).with_name("postgres_migrations")


@dataclass(frozen=True)
class PostgresMigration:
    version: str
    sql_path: Path
    checksum: str


def apply_postgres_migrations(*, connection: Any, namespace: str) -> list[str]:
    """Apply every pending migration of ``namespace`` under an advisory lock.

    Returns the versions applied by this call.
    """
    lock_key = _migration_lock_key(namespace=namespace)
    connection.execute("SELECT pg_advisory_lock(%s::bigint)", (lock_key,))
    try:
        applied = _apply_pending(connection=connection, namespace=namespace)
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.execute("SELECT pg_advisory_unlock(%s::bigint)", (lock_key,))
    return applied


def pending_postgres_migrations(*, connection: Any, namespace: str) -> list[str]:
    _ensure_ledger(connection=connection)
    recorded = _recorded_checksums(connection=connection, namespace=namespace)
    return [
        migration.version
        for migration in _verified_migrations(namespace=namespace, recorded=recorded)
        if migration.version not in recorded
    ]


def _apply_pending(*, connection: Any, namespace: str) -> list[str]:
    _ensure_ledger(connection=connection)
    recorded = _recorded_checksums(connection=connection, namespace=namespace)
    applied: list[str] = []
    for migration in _verified_migrations(namespace=namespace, recorded=recorded):
        if migration.version in recorded:
            continue
        for statement in _split_statements(migration.sql_path.read_text(encoding="utf-8")):
            connection.execute(statement)
        connection.execute(
            """
            INSERT INTO schema_migrations (
                version,
                namespace,
                checksum,
                applied_at
            ) VALUES (%s, %s, %s, %s)
            """,
            (
                f"{namespace}:{migration.version}",
                namespace,
                migration.checksum,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        applied.append(migration.version)
    connection.commit()
    if applied:
        logger.info(
            "postgres_migrations.applied",
            extra={"extra_fields": {"namespace": namespace, "versions": applied}},
        )
    return applied


def _ensure_ledger(*, connection: Any) -> None:
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            namespace TEXT NOT NULL,
            checksum TEXT NOT NULL,
            applied_at TEXT NOT NULL
        )
        """
    )


def _recorded_checksums(*, connection: Any, namespace: str) -> dict[str, str]:
    rows = connection.execute(
        """
        SELECT version, checksum
        FROM schema_migrations
        WHERE namespace = %s
        ORDER BY version ASC
        """,
        (namespace,),
    ).fetchall()
    prefix = f"{namespace}:"
    recorded: dict[str, str] = {}
    for row in rows:
        version = str(row["version"]).removeprefix(prefix)
        checksum = str(row["checksum"])
        if recorded.get(version, checksum) != checksum:
            raise RuntimeError(f"POSTGRES_MIGRATION_CHECKSUM_MISMATCH:{namespace}:{version}")
        recorded[version] = checksum
    return recorded


def _verified_migrations(
    *, namespace: str, recorded: dict[str, str]
) -> list[PostgresMigration]:
    migrations = _load_migrations(namespace=namespace)
    for migration in migrations:
        checksum = recorded.get(migration.version)
        if checksum is not None and checksum != migration.checksum:
            raise RuntimeError(
                f"POSTGRES_MIGRATION_CHECKSUM_MISMATCH:{namespace}:{migration.version}"
            )
    return migrations


def _split_statements(sql: str) -> list[str]:
    return [statement.strip() for statement in sql.split(";") if statement.strip()]


def _load_migrations(*, namespace: str) -> list[PostgresMigration]:
    namespace_path = MIGRATIONS_ROOT / namespace
    if not namespace_path.exists():
        raise RuntimeError(f"POSTGRES_MIGRATIONS_NAMESPACE_NOT_FOUND:{namespace}")
    migrations: list[PostgresMigration] = []
    for sql_path in sorted(namespace_path.glob("*.sql")):
        sql = sql_path.read_text(encoding="utf-8")
        migrations.append(
            PostgresMigration(
                version=sql_path.stem.split("_", maxsplit=1)[0],
                sql_path=sql_path,
                checksum=hashlib.sha256(sql.encode("utf-8")).hexdigest(),
            )
        )
    return migrations


def _migration_lock_key(*, namespace: str) -> int:
    digest = hashlib.sha256(namespace.encode("utf-8")).digest()[:8]
    return int.from_bytes(digest, byteorder="big", signed=True)
