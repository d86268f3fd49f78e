"""
Command-line interface for the lifecycle execution engine.

Provides commands to initialise the store, trigger runs, inspect status,
recover stale batches and run the trigger daemon.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from prometheus_client import start_http_server

from ilmd.config.engine_config import EngineConfig, load_engine_config, seed_store
from ilmd.engine.guard import ConcurrencyGuard
from ilmd.engine.orchestrator import ExecutionOrchestrator
from ilmd.executors import DryRunExecutor, load_executor
from ilmd.executors.base import ActionExecutor
from ilmd.logging_setup import setup_logging
from ilmd.monitoring import ExecutionMetrics
from ilmd.scheduler import ExecutionScheduler
from ilmd.storage.execution_log import ExecutionLogWriter
from ilmd.storage.repository import ExecutionStore


def build_executor(config: EngineConfig) -> ActionExecutor:
    """Configured executor, or the dry-run executor."""
    if config.dry_run or not config.executor:
        return DryRunExecutor()
    return load_executor(config.executor)


def build_orchestrator(config: EngineConfig, metrics: Optional[ExecutionMetrics] = None) -> ExecutionOrchestrator:
    store = ExecutionStore(config.db_path)
    store.ensure_schema()
    log_writer = ExecutionLogWriter(config.db_path, logs_dir=config.log_dir)
    return ExecutionOrchestrator(store, build_executor(config), log_writer=log_writer, metrics=metrics)


def cmd_init(config: EngineConfig, args) -> int:
    store = ExecutionStore(config.db_path)
    schedule_ids = seed_store(store, config)
    print(f"Initialised {config.db_path}")
    for name, schedule_id in schedule_ids.items():
        print(f"  schedule {name} (id {schedule_id})")
    for key, value in config.settings.items():
        print(f"  setting {key} = {value}")
    return 0


def cmd_run(config: EngineConfig, args) -> int:
    orchestrator = build_orchestrator(config, ExecutionMetrics())
    summary = orchestrator.execute(
        config.schedule_name,
        resume_batch_id=args.resume_batch,
        force_run=args.force
    )

    print(f"Exit reason: {summary.exit_reason.value}")
    print(f"Batches: {summary.batch_count}")
    for batch_id in summary.batch_ids:
        marker = " (failed)" if batch_id in summary.failed_batches else ""
        print(f"  {batch_id}{marker}")
    print(f"Dispatched: {summary.dispatched}  completed: {summary.completed}  failed: {summary.failed}")
    return 0 if not summary.failed_batches else 1


def cmd_check(config: EngineConfig, args) -> int:
    store = ExecutionStore(config.db_path)
    store.ensure_schema()
    decision = ConcurrencyGuard(store).check(config.schedule_name)
    print(f"Schedule {config.schedule_name}: {'EXECUTE' if decision.allowed else 'SKIP'} ({decision.reason.value})")
    return 0 if decision.allowed else 3


def cmd_status(config: EngineConfig, args) -> int:
    store = ExecutionStore(config.db_path)
    store.ensure_schema()
    schedule = store.get_schedule(config.schedule_name)
    decision = ConcurrencyGuard(store).check(config.schedule_name)
    log_writer = ExecutionLogWriter(config.db_path)

    status = {
        'schedule': schedule.schedule_name,
        'gate': decision.reason.value,
        'batch_size_limit': store.get_batch_size_limit(),
        'queue': store.queue_summary(),
        'recent_batches': [
            {
                'batch_id': state.execution_batch_id,
                'status': state.status.value,
                'start_time': state.start_time.isoformat(),
                'end_time': state.end_time.isoformat() if state.end_time else None,
                'completed': state.operations_completed,
                'total': state.operations_total
            }
            for state in store.list_states(schedule.schedule_id, limit=args.limit)
        ],
        'execution_log': log_writer.summarize()
    }

    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"Schedule: {status['schedule']}  gate: {status['gate']}  batch size: {status['batch_size_limit']}")
    print("Queue:")
    for queue_status, count in sorted(status['queue'].items()):
        print(f"  {queue_status}: {count}")
    print("Recent batches:")
    for batch in status['recent_batches']:
        print(f"  {batch['batch_id']}  {batch['status']:<11} {batch['completed']}/{batch['total']}  "
              f"started {batch['start_time']}")
    log_summary = status['execution_log']
    print(f"Actions logged: {log_summary['total_actions']}  by status: {log_summary['by_status']}")
    print(f"Space saved: {log_summary['space_saved_mb']} MB")
    return 0


def cmd_recover(config: EngineConfig, args) -> int:
    orchestrator = build_orchestrator(config)
    stale_minutes = args.stale_minutes if args.stale_minutes is not None else config.stale_batch_minutes
    recovered = orchestrator.recover_stale_batches(
        config.schedule_name, stale_minutes, release_items=not args.keep_tags
    )
    if not recovered:
        print("No stale batches found")
    for batch_id in recovered:
        print(f"Interrupted {batch_id}")
    return 0


def cmd_execute_policy(config: EngineConfig, args) -> int:
    orchestrator = build_orchestrator(config)
    completed = orchestrator.execute_policy(args.policy_id, args.max_operations)
    print(f"Policy {args.policy_id}: {completed} actions dispatched")
    return 0


def cmd_execute_item(config: EngineConfig, args) -> int:
    orchestrator = build_orchestrator(config)
    result = orchestrator.execute_single_action(args.queue_id)
    print(f"{result.status.value}: {result.operation}")
    if result.error_message:
        print(f"  {result.error_message}")
    return 0 if result.status.completes_item else 1


async def run_daemon(config: EngineConfig):
    metrics = ExecutionMetrics()
    if config.metrics_port:
        start_http_server(config.metrics_port, registry=metrics.registry)

    scheduler = ExecutionScheduler(
        build_orchestrator(config, metrics),
        schedule_name=config.schedule_name,
        check_interval_minutes=config.check_interval_minutes,
        auto_recover=config.auto_recover,
        stale_batch_minutes=config.stale_batch_minutes
    )
    scheduler.install_signal_handlers()
    await scheduler.start()
    await scheduler.wait_closed()


def cmd_daemon(config: EngineConfig, args) -> int:
    asyncio.run(run_daemon(config))
    return 0


COMMANDS = {
    'init': cmd_init,
    'run': cmd_run,
    'check': cmd_check,
    'status': cmd_status,
    'recover': cmd_recover,
    'daemon': cmd_daemon,
    'execute-policy': cmd_execute_policy,
    'execute-item': cmd_execute_item,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Lifecycle execution engine')
    parser.add_argument('--config', default='configs/ilm.yaml',
                        help='Path to engine configuration file')
    parser.add_argument('--db', help='Path to SQLite database file (overrides config)')
    parser.add_argument('--schedule', help='Schedule name (overrides config)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('init', help='Create tables and seed configured schedules')

    run_parser = subparsers.add_parser('run', help='Run batches while the window is open')
    run_parser.add_argument('--force', action='store_true',
                            help='Ignore the execution window')
    run_parser.add_argument('--resume-batch', help='Batch id left unfinished by an earlier run')

    subparsers.add_parser('check', help='Evaluate the should-execute gate')

    status_parser = subparsers.add_parser('status', help='Show queue and batch status')
    status_parser.add_argument('--limit', type=int, default=10, help='Number of recent batches')
    status_parser.add_argument('--json', action='store_true', help='Print status as JSON')

    recover_parser = subparsers.add_parser('recover', help='Interrupt stale RUNNING batches')
    recover_parser.add_argument('--stale-minutes', type=float,
                                help='Minutes without a checkpoint before a batch is stale')
    recover_parser.add_argument('--keep-tags', action='store_true',
                                help='Leave batch tags on unprocessed items')

    subparsers.add_parser('daemon', help='Run the periodic trigger loop')

    policy_parser = subparsers.add_parser('execute-policy', help='Dispatch all pending items of a policy')
    policy_parser.add_argument('policy_id', type=int)
    policy_parser.add_argument('--max-operations', type=int)

    item_parser = subparsers.add_parser('execute-item', help='Dispatch one queue item')
    item_parser.add_argument('queue_id', type=int)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_engine_config(Path(args.config))
        if args.db:
            config.db_path = args.db
        if args.schedule:
            config.schedule_name = args.schedule

        setup_logging(config.log_level, config.log_dir, args.verbose)
        return COMMANDS[args.command](config, args)

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
