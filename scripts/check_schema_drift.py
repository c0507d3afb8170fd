from __future__ import annotations

import asyncio
import sys

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext

from luckydraw.db.engine import make_engine
from luckydraw.models import Base


def _print_ops(ops, indent: int = 0) -> None:
    prefix = "  " * indent
    for op in ops:
        print(f"{prefix}- {op}")
        sub_ops = getattr(op, "ops", None)
        if sub_ops:
            _print_ops(sub_ops, indent + 1)


def _compare(connection) -> int:
    context = MigrationContext.configure(
        connection=connection,
        opts={
            "compare_type": True,
            "compare_server_default": True,
            "render_as_batch": connection.dialect.name == "sqlite",
        },
    )
    migration = ag_api.produce_migrations(context, Base.metadata)
    upgrade_ops = migration.upgrade_ops
    if upgrade_ops is None:
        print("Schema drift check: ERROR: missing upgrade ops.")
        return 2
    if upgrade_ops.is_empty():
        print("Schema drift check: OK (no differences).")
        return 0
    print("Schema drift check: FAILED. Differences detected:")
    _print_ops(upgrade_ops.ops or [])
    return 1


async def _run() -> int:
    engine = make_engine()
    url_display = engine.url.render_as_string(hide_password=True)
    print(f"Checking {url_display}")
    try:
        async with engine.connect() as connection:
            return await connection.run_sync(_compare)
    except Exception as exc:
        print(f"Schema drift check: ERROR for {url_display}: {exc}", file=sys.stderr)
        return 2
    finally:
        await engine.dispose()


def main() -> int:
    return asyncio.run(_run())


if __name__ == "__main__":
    raise SystemExit(main())
