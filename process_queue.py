#!/usr/bin/env python3
"""
Operator CLI for the FieldSync offline queue.

Drains the queue once against the configured remote store, or inspects and
maintains the queue and its dead letter queue.

Usage:
    python process_queue.py --data-dir /path/to/data              # drain once
    python process_queue.py --data-dir /path/to/data --stats-only
    python process_queue.py --data-dir /path/to/data --clear
    python process_queue.py --data-dir /path/to/data --dlq-list
    python process_queue.py --data-dir /path/to/data --dlq-requeue [ID ...]
    python process_queue.py --data-dir /path/to/data --dlq-purge DAYS

Remote store settings come from FIELDSYNC_* environment variables
(FIELDSYNC_REMOTE_URL, FIELDSYNC_REMOTE_API_KEY, ...) or the flags below.
"""

import argparse
import asyncio
import json
import logging
import sys

logger = logging.getLogger('FieldSync.manual')


def build_config(args):
    """Build FieldSyncConfig from environment plus command line overrides."""
    from validation.config import validate_config

    overrides = {'data_dir': args.data_dir, 'poll_interval': 0.0, 'probe_interval': 0.0}
    if args.remote_url:
        overrides['remote_url'] = args.remote_url
    if args.api_key:
        overrides['remote_api_key'] = args.api_key
    if args.log_level:
        overrides['log_level'] = args.log_level

    # Environment variables fill everything not overridden here
    config, error = validate_config(overrides)
    if error:
        logger.error(f"Invalid configuration: {error}")
        return None
    return config


def show_stats(config) -> int:
    from sync_queue.dlq import DeadLetterQueue
    from sync_queue.operations import get_stats, load_sync_state
    from sync_queue.store import PersistentQueueStore

    store = PersistentQueueStore(config.data_dir)
    dlq = DeadLetterQueue(config.data_dir)
    stats = get_stats(store, dlq)
    state = load_sync_state(config.data_dir)
    stats['last_sync_time'] = state.last_sync_time
    stats['dlq_errors'] = dlq.get_error_summary()
    print(json.dumps(stats, indent=2))
    return 0


def clear_queue(config) -> int:
    from sync_queue.store import PersistentQueueStore

    removed = PersistentQueueStore(config.data_dir).clear()
    logger.info(f"Cleared {removed} pending operation(s)")
    return 0


def list_dead_letters(config, limit: int) -> int:
    from sync_queue.dlq import DeadLetterQueue

    dlq = DeadLetterQueue(config.data_dir)
    entries = dlq.get_recent(limit=limit)
    print(json.dumps({'count': dlq.get_count(), 'entries': entries}, indent=2))
    return 0


def requeue_dead_letters(config, entry_ids) -> int:
    from sync_queue.dlq import DeadLetterQueue
    from sync_queue.dlq_recovery import requeue_dead_letters as _requeue
    from sync_queue.store import PersistentQueueStore

    store = PersistentQueueStore(config.data_dir)
    dlq = DeadLetterQueue(config.data_dir)
    result = _requeue(dlq, store, entry_ids=entry_ids or None)
    logger.info(
        f"Requeued {result.recovered} of {result.total_dlq_entries} dead letter(s), "
        f"{result.skipped_already_queued} already queued, {result.failed} failed"
    )
    return 0 if result.failed == 0 else 1


def purge_dead_letters(config, days: int) -> int:
    from sync_queue.dlq import DeadLetterQueue

    deleted = DeadLetterQueue(config.data_dir).delete_older_than(days)
    logger.info(f"Purged {deleted} dead letter(s) older than {days} days")
    return 0


async def drain_once(config) -> int:
    """Drain the queue once. Returns 0 when nothing was left failing."""
    from connectivity.monitor import ConnectivityMonitor
    from remote.health import check_remote_health
    from session.offline_sync import OfflineSyncSession

    if not config.remote_url:
        logger.error("Set FIELDSYNC_REMOTE_URL or pass --remote-url to drain the queue")
        return 1

    # Start offline so nothing drains before the health check
    monitor = ConnectivityMonitor(initial_online=False)
    async with OfflineSyncSession(config, monitor=monitor) as session:
        pending = session.status().pending_count
        if pending == 0:
            logger.info("Queue is empty. Nothing to process.")
            return 0

        healthy, latency_ms = await check_remote_health(session.remote, timeout=config.connect_timeout)
        if not healthy:
            logger.error("Remote store is unreachable; operations stay queued")
            return 1
        logger.info(f"Remote store reachable ({latency_ms:.0f}ms), draining {pending} operation(s)")
        session.set_online(True)

        result = await session.drain()
        logger.info(f"Drain result: {json.dumps(result.to_dict())}")
        return 0 if result.failed == 0 and result.error is None else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Process the FieldSync offline queue manually')
    parser.add_argument('--data-dir', '-d', required=True, help='Path to the FieldSync data directory')
    parser.add_argument('--remote-url', help='Remote store URL (or set FIELDSYNC_REMOTE_URL)')
    parser.add_argument('--api-key', help='Remote store API key (or set FIELDSYNC_REMOTE_API_KEY)')
    parser.add_argument('--log-level', help='trace, debug, info, warning or error')

    action = parser.add_mutually_exclusive_group()
    action.add_argument('--stats-only', '-s', action='store_true', help='Only show queue stats')
    action.add_argument('--clear', action='store_true', help='Drop every pending operation')
    action.add_argument('--dlq-list', action='store_true', help='List recent dead letters')
    action.add_argument('--dlq-requeue', nargs='*', type=int, metavar='ID',
                        help='Requeue dead letters (all when no ids are given)')
    action.add_argument('--dlq-purge', type=int, metavar='DAYS',
                        help='Delete dead letters older than DAYS')
    parser.add_argument('--limit', type=int, default=20, help='Entries shown by --dlq-list')

    args = parser.parse_args(argv)

    config = build_config(args)
    if config is None:
        return 1

    from shared.logging_config import configure_logging
    configure_logging(config.log_level, json_output=config.json_logs)
    logger.info(f"Using data directory: {config.data_dir}")

    if args.stats_only:
        return show_stats(config)
    if args.clear:
        return clear_queue(config)
    if args.dlq_list:
        return list_dead_letters(config, args.limit)
    if args.dlq_requeue is not None:
        return requeue_dead_letters(config, args.dlq_requeue)
    if args.dlq_purge is not None:
        return purge_dead_letters(config, args.dlq_purge)

    config.log_config()
    return asyncio.run(drain_once(config))


if __name__ == '__main__':
    sys.exit(main())
