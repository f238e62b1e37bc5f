"""Vesting CLI — command-line interface for the disbursement engine.

Usage:
    python -m vesting.cli init --owner alice --schedule schedule.json
    python -m vesting.cli add --caller alice --schedule more.json
    python -m vesting.cli sweep
    python -m vesting.cli sweep --height 120
    python -m vesting.cli stop --caller alice --id 3
    python -m vesting.cli update-owner --caller alice --owner bob
    python -m vesting.cli list --start-after 10 --limit 20
    python -m vesting.cli status
    python -m vesting.cli check-invariants

Schedule files are JSON lists of entries:
    [{"recipient": "bob",
      "asset": {"kind": "native", "denom": "ujuno", "amount": 100},
      "trigger": {"kind": "at_height", "height": 500}}]
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, Optional

from vesting.config import DEFAULT_CONFIG_PATH, PROJECT_ROOT, VestingSettings
from vesting.models.obligation import BlockInfo, parse_time
from vesting.persistence.event_log import EventLog
from vesting.persistence.obligation_store import ObligationStore
from vesting.service import ServiceResult, VestingService
from vesting.settlement.executor import OutboxExecutor


def _settings(args: argparse.Namespace) -> VestingSettings:
    settings = VestingSettings.load(args.config)
    if args.data is not None:
        settings = dataclasses.replace(settings, data_dir=args.data)
    return settings


def _make_service(args: argparse.Namespace) -> VestingService:
    """Create a VestingService with durable persistence."""
    settings = _settings(args)
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return VestingService(
        ObligationStore(storage_path=settings.store_path),
        event_log=EventLog(storage_path=settings.event_log_path),
        executor=OutboxExecutor(settings.outbox_path),
        oracle=settings.block_oracle(),
    )


def _load_schedule(path: Optional[Path]) -> list[dict[str, Any]]:
    if path is None:
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Schedule file must hold a JSON list: {path}")
    return data


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_init(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.initialize(args.owner, _load_schedule(args.schedule)))


def cmd_add(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.add_obligations(args.caller, _load_schedule(args.schedule)))


def cmd_sweep(args: argparse.Namespace) -> int:
    """Pay everything payable now (or at an explicit height/time)."""
    service = _make_service(args)
    block = None
    if args.height is not None or args.time is not None:
        current = _settings(args).block_oracle().current()
        block = BlockInfo(
            height=args.height if args.height is not None else current.height,
            time=parse_time(args.time) if args.time is not None else current.time,
        )
    return _report(service.sweep(block, caller=args.caller))


def cmd_stop(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.stop_payment(args.caller, args.id))


def cmd_update_owner(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.update_owner(args.caller, args.owner))


def cmd_list(args: argparse.Namespace) -> int:
    service = _make_service(args)
    obligations = service.list_obligations(start_after=args.start_after, limit=args.limit)
    print(json.dumps({"obligations": [o.to_dict() for o in obligations]}, indent=2))
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    service = _make_service(args)
    config = service.get_config()
    if config is None:
        print("Failed: vesting schedule not initialized", file=sys.stderr)
        return 1
    print(json.dumps(config.to_dict(), indent=2))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2, default=str))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run the offline store/event-log invariant checks."""
    tools_dir = PROJECT_ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    settings = _settings(args)
    return check(settings.store_path, settings.event_log_path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vesting",
        description="Scheduled-payment vesting engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to config file (default: config/vesting.json)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Data directory (overrides config and VESTING_DATA_DIR)",
    )
    sub = parser.add_subparsers(dest="command")

    # init
    p_init = sub.add_parser("init", help="Initialize owner and schedule")
    p_init.add_argument("--owner", required=True, help="Owner address")
    p_init.add_argument("--schedule", type=Path, help="JSON schedule file")

    # add
    p_add = sub.add_parser("add", help="Add obligations (owner only)")
    p_add.add_argument("--caller", required=True, help="Authenticated caller address")
    p_add.add_argument("--schedule", type=Path, required=True, help="JSON schedule file")

    # sweep
    p_sweep = sub.add_parser("sweep", help="Pay every obligation whose trigger has expired")
    p_sweep.add_argument("--height", type=int, help="Block height (default: from clock)")
    p_sweep.add_argument("--time", help="Block time, ISO-8601 UTC (default: now)")
    p_sweep.add_argument("--caller", help="Caller address, for the audit trail")

    # stop
    p_stop = sub.add_parser("stop", help="Stop an obligation and refund the owner")
    p_stop.add_argument("--caller", required=True, help="Authenticated caller address")
    p_stop.add_argument("--id", type=int, required=True, help="Obligation ID")

    # update-owner
    p_owner = sub.add_parser("update-owner", help="Transfer ownership")
    p_owner.add_argument("--caller", required=True, help="Authenticated caller address")
    p_owner.add_argument("--owner", required=True, help="New owner address")

    # list
    p_list = sub.add_parser("list", help="List all obligations")
    p_list.add_argument("--start-after", type=int, help="Only ids greater than this")
    p_list.add_argument("--limit", type=int, help="Maximum number of obligations")

    sub.add_parser("config", help="Show current owner")
    sub.add_parser("status", help="Show schedule status")
    sub.add_parser("check-invariants", help="Audit the persisted store and event log")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "init": cmd_init,
        "add": cmd_add,
        "sweep": cmd_sweep,
        "stop": cmd_stop,
        "update-owner": cmd_update_owner,
        "list": cmd_list,
        "config": cmd_config,
        "status": cmd_status,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (ValueError, OSError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
