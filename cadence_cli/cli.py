from __future__ import annotations

import argparse
import json
import os
import sys
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any

from cadence_core.config import Config
from cadence_core.logging import configure_logging
from cadence_core.rollouts.types import RolloutView
from cadence_core.runtime import Runtime, build_runtime
from cadence_cli.documents import load_rollout_document

DEFAULT_STATE_ROOT = "./cadence_data"

LOCAL_ENV_DEFAULTS: dict[str, str] = {
    "STORAGE_BACKEND": "local",
    "LOCAL_STATE_ROOT": DEFAULT_STATE_ROOT,
    "ENV": "dev",
    "LOG_LEVEL": "WARNING",
    "LEASE_BACKEND": "sqlite",
    "NOTIFIER_BACKEND": "log",
}


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _apply_env(env: dict[str, str], *, override: bool = False) -> None:
    for key, value in env.items():
        if value == "":
            continue
        if not override and key in os.environ:
            continue
        os.environ[key] = value


def _runtime(args: argparse.Namespace) -> Runtime:
    if getattr(args, "state_root", None):
        _apply_env({"LOCAL_STATE_ROOT": args.state_root}, override=True)
    _apply_env(LOCAL_ENV_DEFAULTS)
    config = Config.from_env()
    configure_logging("cadence-cli", env=config.env)
    if config.lease_backend == "firestore" or config.notifier_backend == "pubsub":
        from gcp_adapter.runtime import build_runtime as build_gcp_runtime

        return build_gcp_runtime(config)
    return build_runtime(config)


def _view_payload(view: RolloutView) -> dict[str, Any]:
    return {
        "rollout": asdict(view.rollout),
        "counts": asdict(view.counts),
        "groups": [
            {**asdict(item.group), "counts": asdict(item.counts)}
            for item in view.groups
        ],
    }


def _parse_attributes(values: list[str] | None) -> dict[str, object] | None:
    if not values:
        return None
    attributes: dict[str, object] = {}
    for raw in values:
        if "=" not in raw:
            raise ValueError(f"Attribute must be key=value: {raw}")
        key, value = raw.split("=", 1)
        attributes[key.strip()] = value.strip()
    return attributes


def cmd_create(args: argparse.Namespace) -> int:
    document = load_rollout_document(Path(args.file))
    runtime = _runtime(args)
    rollout = runtime.manager.create(document.to_spec())
    _print_json(asdict(rollout))
    return 0


def _lifecycle(operation: str):
    def command(args: argparse.Namespace) -> int:
        runtime = _runtime(args)
        rollout = getattr(runtime.manager, operation)(args.rollout_id)
        _print_json(asdict(rollout))
        return 0

    return command


def cmd_approve(args: argparse.Namespace) -> int:
    runtime = _runtime(args)
    rollout = runtime.manager.approve(
        args.rollout_id,
        args.decision,
        remark=args.remark,
        decided_by=args.decided_by,
    )
    _print_json(asdict(rollout))
    return 0


def cmd_get(args: argparse.Namespace) -> int:
    runtime = _runtime(args)
    _print_json(_view_payload(runtime.manager.get(args.rollout_id)))
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    runtime = _runtime(args)
    rollouts = runtime.manager.list(args.tenant, include_deleted=args.include_deleted)
    _print_json([asdict(rollout) for rollout in rollouts])
    return 0


def cmd_tick(args: argparse.Namespace) -> int:
    runtime = _runtime(args)
    if args.rollout_id:
        results = [runtime.scheduler.tick(args.rollout_id)]
    else:
        results = runtime.scheduler.run_cycle(args.tenant)
    _print_json([asdict(result) for result in results])
    return 1 if any(result.status == "failed" for result in results) else 0


def cmd_run_scheduler(args: argparse.Namespace) -> int:
    runtime = _runtime(args)
    if args.cycles:
        for index in range(args.cycles):
            runtime.scheduler.run_cycle(args.tenant)
            if index + 1 < args.cycles:
                time.sleep(runtime.config.tick_interval_seconds)
        return 0
    loop = runtime.scheduler_loop(args.tenant)
    try:
        loop.run_forever()
    except KeyboardInterrupt:
        loop.stop()
    return 0


def cmd_targets_register(args: argparse.Namespace) -> int:
    runtime = _runtime(args)
    target = runtime.stores.targets.register_target(
        tenant=args.tenant,
        name=args.name,
        target_id=args.target_id,
        tags=args.tag,
        attributes=_parse_attributes(args.attr),
    )
    _print_json(asdict(target))
    return 0


def cmd_targets_list(args: argparse.Namespace) -> int:
    runtime = _runtime(args)
    targets = runtime.stores.targets.load_targets()
    if args.tenant:
        targets = [target for target in targets if target.tenant == args.tenant]
    _print_json([asdict(target) for target in targets])
    return 0


def cmd_actions_report(args: argparse.Namespace) -> int:
    runtime = _runtime(args)
    action = runtime.stores.actions.report_status(
        group_id=args.group_id,
        target_id=args.target_id,
        status=args.status,
        error=args.error,
    )
    if action is None:
        raise ValueError(f"No action for target {args.target_id} in {args.group_id}")
    _print_json(asdict(action))
    return 0


def cmd_actions_list(args: argparse.Namespace) -> int:
    runtime = _runtime(args)
    actions = runtime.stores.actions.list_actions(group_id=args.group_id)
    _print_json([asdict(action) for action in actions])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cadence")
    parser.add_argument("--state-root", help="Local state directory")
    subparsers = parser.add_subparsers(dest="command")

    create_parser = subparsers.add_parser("create", help="Create a rollout from YAML")
    create_parser.add_argument("--file", required=True)
    create_parser.set_defaults(func=cmd_create)

    for name, help_text in (
        ("start", "Start a ready rollout"),
        ("pause", "Pause a running rollout"),
        ("resume", "Resume a paused rollout"),
        ("stop", "Stop a rollout and cancel open actions"),
        ("delete", "Delete a rollout"),
    ):
        lifecycle_parser = subparsers.add_parser(name, help=help_text)
        lifecycle_parser.add_argument("rollout_id")
        lifecycle_parser.set_defaults(func=_lifecycle(name))

    approve_parser = subparsers.add_parser("approve", help="Record an approval")
    approve_parser.add_argument("rollout_id")
    approve_parser.add_argument(
        "--decision", required=True, choices=["approved", "denied"]
    )
    approve_parser.add_argument("--remark")
    approve_parser.add_argument("--decided-by")
    approve_parser.set_defaults(func=cmd_approve)

    get_parser = subparsers.add_parser("get", help="Show a rollout with counts")
    get_parser.add_argument("rollout_id")
    get_parser.set_defaults(func=cmd_get)

    list_parser = subparsers.add_parser("list", help="List rollouts")
    list_parser.add_argument("--tenant")
    list_parser.add_argument("--include-deleted", action="store_true")
    list_parser.set_defaults(func=cmd_list)

    tick_parser = subparsers.add_parser("tick", help="Run one scheduler pass")
    tick_parser.add_argument("--rollout-id")
    tick_parser.add_argument("--tenant")
    tick_parser.set_defaults(func=cmd_tick)

    scheduler_parser = subparsers.add_parser(
        "run-scheduler", help="Run the scheduler loop"
    )
    scheduler_parser.add_argument("--tenant")
    scheduler_parser.add_argument("--cycles", type=int, default=0)
    scheduler_parser.set_defaults(func=cmd_run_scheduler)

    targets_parser = subparsers.add_parser("targets", help="Manage targets")
    targets_sub = targets_parser.add_subparsers(dest="targets_command")
    register_parser = targets_sub.add_parser("register", help="Register a target")
    register_parser.add_argument("--tenant", required=True)
    register_parser.add_argument("--name", required=True)
    register_parser.add_argument("--id", dest="target_id")
    register_parser.add_argument("--tag", action="append")
    register_parser.add_argument("--attr", action="append", help="key=value")
    register_parser.set_defaults(func=cmd_targets_register)
    targets_list_parser = targets_sub.add_parser("list", help="List targets")
    targets_list_parser.add_argument("--tenant")
    targets_list_parser.set_defaults(func=cmd_targets_list)

    actions_parser = subparsers.add_parser("actions", help="Inspect device actions")
    actions_sub = actions_parser.add_subparsers(dest="actions_command")
    report_parser = actions_sub.add_parser("report", help="Record device feedback")
    report_parser.add_argument("--group-id", required=True)
    report_parser.add_argument("--target-id", required=True)
    report_parser.add_argument("--status", required=True)
    report_parser.add_argument("--error")
    report_parser.set_defaults(func=cmd_actions_report)
    actions_list_parser = actions_sub.add_parser("list", help="List actions")
    actions_list_parser.add_argument("--group-id")
    actions_list_parser.set_defaults(func=cmd_actions_list)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
