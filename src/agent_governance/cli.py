"""Command-line interface router for agent-governance."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any

import structlog

from agent_governance.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from agent_governance.errors import GovernanceError
from agent_governance.observability.logging import configure_from_config
from agent_governance.persistence.state_db import StateDBError
from agent_governance.services import GovernanceServices, build_services


class ExitCode(IntEnum):
    """Process exit-code contract."""

    SUCCESS = 0
    GOVERNANCE_ERROR = 1
    USAGE_ERROR = 2


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = ExitCode.USAGE_ERROR

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="agent-governance",
        description=(
            "agent-governance: audit, budgets, skills and trace retention for AI agents.\n\n"
            "Common workflows:\n"
            "  agent-governance migrate                      Create or upgrade the state DB\n"
            "  agent-governance audit --tenant acme          Query the audit log\n"
            "  agent-governance budget check --tenant acme   Check remaining budget\n"
            "  agent-governance retention-enforce --all      Purge traces past retention\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to governance TOML config (default: ./governance.toml if present).",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="State DB path; overrides database.path from config.",
    )
    parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_parser = subparsers.add_parser("migrate", help="Apply state DB migrations")
    migrate_parser.set_defaults(handler=_cmd_migrate)

    audit_parser = subparsers.add_parser("audit", help="Query audit entries for a tenant")
    audit_parser.add_argument("--tenant", required=True, help="Tenant id")
    audit_parser.add_argument("--workspace", default=None, help="Filter by workspace id")
    audit_parser.add_argument("--trace", default=None, help="Filter by trace id")
    audit_parser.add_argument("--actor", default=None, help="Filter by actor")
    audit_parser.add_argument(
        "--event-type", dest="event_types", action="append", default=None, help="Filter by event type"
    )
    audit_parser.add_argument("--limit", type=int, default=100)
    audit_parser.add_argument("--offset", type=int, default=0)
    audit_parser.set_defaults(handler=_cmd_audit)

    audit_stats_parser = subparsers.add_parser("audit-stats", help="Audit entry counts for a tenant")
    audit_stats_parser.add_argument("--tenant", required=True, help="Tenant id")
    audit_stats_parser.set_defaults(handler=_cmd_audit_stats)

    skills_parser = subparsers.add_parser("skills", help="Browse the skill registry")
    skills_sub = skills_parser.add_subparsers(dest="skills_command", required=True)
    skills_list = skills_sub.add_parser("list", help="List latest version of each skill")
    skills_list.add_argument("--state", default=None, help="Only skills in this lifecycle state")
    skills_list.add_argument("--include-deprecated", action="store_true")
    skills_list.add_argument("--limit", type=int, default=50)
    skills_list.add_argument("--offset", type=int, default=0)
    skills_list.set_defaults(handler=_cmd_skills_list)
    skills_search = skills_sub.add_parser("search", help="Substring search over skills")
    skills_search.add_argument("query", help="Search text")
    skills_search.add_argument("--state", default=None)
    skills_search.add_argument("--include-deprecated", action="store_true")
    skills_search.add_argument("--limit", type=int, default=50)
    skills_search.add_argument("--offset", type=int, default=0)
    skills_search.set_defaults(handler=_cmd_skills_search)

    budget_parser = subparsers.add_parser("budget", help="Inspect tenant budgets")
    budget_sub = budget_parser.add_subparsers(dest="budget_command", required=True)
    budget_show = budget_sub.add_parser("show", help="Show a tenant budget and spend stats")
    budget_show.add_argument("--tenant", required=True)
    budget_show.set_defaults(handler=_cmd_budget_show)
    budget_check = budget_sub.add_parser("check", help="Check whether an amount fits the budget")
    budget_check.add_argument("--tenant", required=True)
    budget_check.add_argument("--amount", type=float, default=0.0, help="Requested spend in USD")
    budget_check.set_defaults(handler=_cmd_budget_check)

    enforce_parser = subparsers.add_parser(
        "retention-enforce", help="Delete traces older than the tenant retention window"
    )
    target = enforce_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--tenant", default=None, help="Enforce one tenant's policy")
    target.add_argument("--all", action="store_true", help="Enforce every configured policy")
    enforce_parser.add_argument("--actor", default="cli", help="Actor recorded in the audit log")
    enforce_parser.set_defaults(handler=_cmd_retention_enforce)

    retention_stats_parser = subparsers.add_parser("retention-stats", help="Retention policy summary")
    retention_stats_parser.set_defaults(handler=_cmd_retention_stats)

    trace_stats_parser = subparsers.add_parser("trace-stats", help="Trace volume, cost and error rate")
    trace_stats_parser.add_argument("--tenant", required=True)
    trace_stats_parser.set_defaults(handler=_cmd_trace_stats)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return the process exit code."""

    parser = build_parser()
    try:
        namespace = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else int(ExitCode.USAGE_ERROR)

    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.USAGE_ERROR)

    try:
        config = _load_effective_config(namespace)
        configure_from_config(config, stream=sys.stderr)
        structlog.get_logger(__name__).debug(
            "effective_config", command=namespace.command, config=dump_effective_config(config)
        )
        services = build_services(config)
        payload = handler(namespace, services)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return int(exc.exit_code)
    except (GovernanceError, StateDBError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return int(ExitCode.GOVERNANCE_ERROR)

    _emit(namespace, payload)
    return int(ExitCode.SUCCESS)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


def cli_entrypoint() -> None:
    """Console-script entrypoint."""

    raise SystemExit(run_cli())


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_migrate(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    version = services.db.migrate()
    return {
        "command": "migrate",
        "db_path": services.db.path.as_posix(),
        "schema_version": version,
        "migrations": [record.name for record in services.db.schema_history()],
    }


def _cmd_audit(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    page = services.audit.query(
        args.tenant,
        workspace_id=args.workspace,
        trace_id=args.trace,
        actor=args.actor,
        event_types=args.event_types,
        limit=args.limit,
        offset=args.offset,
    )
    return {
        "command": "audit",
        "items": [entry.to_dict() for entry in page.items],
        "total": page.total,
        "has_more": page.has_more,
        "limit": page.limit,
        "offset": page.offset,
    }


def _cmd_audit_stats(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    return {"command": "audit-stats", "tenant_id": args.tenant, **services.audit.get_stats(args.tenant).to_dict()}


def _cmd_skills_list(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    page = services.registry.list(
        include_deprecated=args.include_deprecated,
        state=args.state,
        limit=args.limit,
        offset=args.offset,
    )
    return _skills_payload("skills list", page)


def _cmd_skills_search(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    page = services.registry.search(
        args.query,
        include_deprecated=args.include_deprecated,
        state=args.state,
        limit=args.limit,
        offset=args.offset,
    )
    return _skills_payload("skills search", page)


def _cmd_budget_show(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    budget = services.budgets.require_budget(args.tenant)
    stats = services.budgets.get_stats(args.tenant)
    return {
        "command": "budget show",
        "budget": budget.to_dict(),
        "stats": None if stats is None else stats.to_dict(),
    }


def _cmd_budget_check(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    if args.amount < 0:
        raise CLIError("--amount must be >= 0")
    check = services.budgets.check_budget(args.tenant, args.amount)
    return {"command": "budget check", "tenant_id": args.tenant, **check.to_dict()}


def _cmd_retention_enforce(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    if args.all:
        results = services.retention.enforce_all(actor=args.actor)
    else:
        results = [services.retention.enforce_policy(args.tenant, actor=args.actor)]
    return {
        "command": "retention-enforce",
        "results": [result.to_dict() for result in results],
        "deleted": sum(result.deleted for result in results),
    }


def _cmd_retention_stats(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    return {"command": "retention-stats", **services.retention.get_stats().to_dict()}


def _cmd_trace_stats(args: argparse.Namespace, services: GovernanceServices) -> dict[str, Any]:
    return {
        "command": "trace-stats",
        "tenant_id": args.tenant,
        **services.traces.get_stats(args.tenant).to_dict(),
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, object] = {}
    if args.db_path is not None:
        overrides["database.path"] = Path(args.db_path).expanduser().resolve().as_posix()
    try:
        return load_config(args.config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=ExitCode.USAGE_ERROR) from exc


def _skills_payload(command: str, page: Any) -> dict[str, Any]:
    return {
        "command": command,
        "items": [
            {
                "name": record.name,
                "version": record.version,
                "state": record.state.value,
                "description": record.description,
            }
            for record in page.items
        ],
        "total": page.total,
        "has_more": page.has_more,
    }


def _emit(args: argparse.Namespace, payload: Mapping[str, object]) -> None:
    if args.json:
        print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str))
        return
    for key, value in payload.items():
        if key == "command":
            continue
        if isinstance(value, (dict, list)):
            rendered = json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False, default=str)
            print(f"{key}:\n{rendered}")
        else:
            print(f"{key}: {value}")


__all__ = ["CLIError", "ExitCode", "build_parser", "cli_entrypoint", "main", "run_cli"]
