"""Create attribute and town tables, or run raw DDL scripts, from the command line.

Usage examples:
    set TOWNKEEP_DATABASE_TYPE=mysql
    python -m townkeep --namespace users --namespace currency

    python -m townkeep --dry-run --dialect mysql
    python -m townkeep --script path/to/extra_tables.sql --no-domain
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from townkeep.domain.errors import ConfigurationMissing, SchemaFailure
from townkeep.infrastructure.config import ConfigProvider, EnvConfigProvider
from townkeep.infrastructure.db.connection import ConnectionManager
from townkeep.infrastructure.db.dialect import Dialect, dialect_for
from townkeep.infrastructure.db.schema import SchemaProvisioner, render_domain_schema, render_generic_table


DEFAULT_NAMESPACES: tuple[str, ...] = ("users", "currency", "info")


@dataclass(frozen=True)
class ProvisionPlan:
    namespaces: list[str]
    include_domain: bool
    script_statements: list[str]

    def render(self, dialect: Dialect) -> list[str]:
        statements = [render_generic_table(dialect, namespace) for namespace in self.namespaces]
        if self.include_domain:
            statements.extend(render_domain_schema(dialect))
        statements.extend(self.script_statements)
        return statements


def split_sql_statements(sql_text: str) -> list[str]:
    """Split a script on top-level semicolons, ignoring quotes and comments."""
    statements: list[str] = []
    buffer: list[str] = []
    in_single = False
    in_double = False
    in_backtick = False
    in_line_comment = False
    in_block_comment = False
    i = 0
    size = len(sql_text)

    while i < size:
        ch = sql_text[i]
        nxt = sql_text[i + 1] if i + 1 < size else ""

        if in_line_comment:
            if ch == "\n":
                in_line_comment = False
            i += 1
            continue

        if in_block_comment:
            if ch == "*" and nxt == "/":
                in_block_comment = False
                i += 2
                continue
            i += 1
            continue

        quoted = in_single or in_double or in_backtick
        if not quoted:
            if (ch == "-" and nxt == "-") or ch == "#":
                in_line_comment = True
                i += 1 if ch == "#" else 2
                continue
            if ch == "/" and nxt == "*":
                in_block_comment = True
                i += 2
                continue
            if ch == ";":
                statement = "".join(buffer).strip()
                if statement:
                    statements.append(statement)
                buffer = []
                i += 1
                continue

        if ch == "'" and not in_double and not in_backtick:
            in_single = not in_single
        elif ch == '"' and not in_single and not in_backtick:
            in_double = not in_double
        elif ch == "`" and not in_single and not in_double:
            in_backtick = not in_backtick

        buffer.append(ch)
        i += 1

    trailing = "".join(buffer).strip()
    if trailing:
        statements.append(trailing)
    return statements


def load_script(script_path: Path | str) -> list[str]:
    path = Path(script_path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"DDL script not found: {path}")
    return split_sql_statements(path.read_text(encoding="utf-8"))


def build_plan(namespaces: Sequence[str] | None, *, include_domain: bool = True, script: Path | str | None = None) -> ProvisionPlan:
    chosen = [str(name).strip().lower() for name in (namespaces or DEFAULT_NAMESPACES) if str(name).strip()]
    return ProvisionPlan(
        namespaces=chosen,
        include_domain=include_domain,
        script_statements=load_script(script) if script else [],
    )


def execute_plan(plan: ProvisionPlan, provisioner: SchemaProvisioner) -> tuple[int, int]:
    """Run a plan; returns ``(succeeded, attempted)`` statement counts."""
    succeeded = 0
    attempted = 0
    for namespace in plan.namespaces:
        attempted += 1
        succeeded += int(provisioner.ensure_generic_table(namespace))
    if plan.include_domain:
        outcome = provisioner.ensure_domain_schema()
        attempted += len(outcome)
        succeeded += sum(1 for ok in outcome.values() if ok)
    attempted += len(plan.script_statements)
    succeeded += provisioner.execute_script(plan.script_statements)
    return succeeded, attempted


def main(argv: Sequence[str] | None = None, provider: ConfigProvider | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create townkeep attribute and town tables")
    parser.add_argument(
        "--namespace",
        action="append",
        default=None,
        help="Attribute namespace to create (repeatable). Defaults to users, currency and info.",
    )
    parser.add_argument("--no-domain", action="store_true", help="Skip the town tables")
    parser.add_argument("--script", type=str, default=None, help="Extra SQL file executed verbatim, statement by statement")
    parser.add_argument(
        "--dialect",
        choices=("sqlite", "mysql"),
        default=None,
        help="Dialect used to render a dry run (defaults to the configured database.type)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Only print the statements, do not connect")
    args = parser.parse_args(argv)

    try:
        plan = build_plan(args.namespace, include_domain=not args.no_domain, script=args.script)
    except (FileNotFoundError, SchemaFailure) as exc:
        print(f"Provisioning plan failed: {exc}")
        return 2

    provider = provider or EnvConfigProvider()

    if args.dry_run:
        kind = args.dialect or provider.get_string("database.type", "sqlite") or "sqlite"
        try:
            statements = plan.render(dialect_for(kind))
        except (ValueError, SchemaFailure) as exc:
            print(f"Provisioning plan failed: {exc}")
            return 2
        for statement in statements:
            print(f"{statement};")
        print(f"Dry run complete. {len(statements)} statement(s), no SQL executed.")
        return 0

    try:
        connections = ConnectionManager(provider)
    except ConfigurationMissing as exc:
        print(f"Database configuration invalid: {exc}")
        return 2

    with connections:
        succeeded, attempted = execute_plan(plan, SchemaProvisioner(connections))
    print(f"Executed {succeeded} of {attempted} statement(s) successfully.")
    return 0 if succeeded == attempted else 1


if __name__ == "__main__":
    raise SystemExit(main())
