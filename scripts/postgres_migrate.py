import argparse
import os
import sys
from importlib.util import find_spec
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

_NAMESPACE = "quote_workflow"


def _connect(dsn: str):
    if find_spec("psycopg") is None:
        raise RuntimeError("POSTGRES_MIGRATION_DRIVER_MISSING")
    import psycopg
    from psycopg.rows import dict_row

    return psycopg.connect(dsn, row_factory=dict_row)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Apply forward-only PostgreSQL migrations for the quote workflow store."
    )
    parser.add_argument(
        "--dsn",
        default=os.getenv("QUOTE_WORKFLOW_POSTGRES_DSN", "").strip(),
        help="PostgreSQL DSN for quote workflow migrations.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List pending migration versions without applying them.",
    )
    args = parser.parse_args(argv)

    if not args.dsn:
        raise RuntimeError(f"POSTGRES_MIGRATION_DSN_REQUIRED:{_NAMESPACE}")

    from src.infrastructure.postgres_migrations import (
        apply_postgres_migrations,
        pending_postgres_migrations,
    )

    with _connect(args.dsn) as connection:
        if args.dry_run:
            pending = pending_postgres_migrations(connection=connection, namespace=_NAMESPACE)
            print(f"Pending migrations for namespace={_NAMESPACE}: {', '.join(pending) or 'none'}")
            return 0
        applied = apply_postgres_migrations(connection=connection, namespace=_NAMESPACE)
    print(f"Applied migrations for namespace={_NAMESPACE}: {', '.join(applied) or 'none'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
