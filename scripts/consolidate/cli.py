#!/usr/bin/env python3
"""
Command line entry point for shard consolidation.
Collects matching rows from every source node, then writes them to the
destination table in one transaction.
"""
import sys
import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from consolidate.collector import FanOutCollector
from consolidate.config import (
    MSG_COLLECTING, MSG_LOADING_ENV, MSG_WRITING, MigrationConfig, build_read_query,
)
from consolidate.database import DestinationDatabase, SourceReader
from consolidate.errors import ConfigurationError, SourceQueryError, WriteError
from consolidate.logger import LogLevel, StructuredLogger, get_logger, set_logger
from consolidate.metrics import MetricsCollector
from consolidate.models import CollectSummary, WriteSummary
from consolidate.writer import BatchWriter


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


@dataclass
class MigrationResult:
    """Outcome of one collect-then-write run."""
    collected: CollectSummary
    written: Optional[WriteSummary]
    dry_run: bool = False


def run_migration(
    config: MigrationConfig,
    query_func,
    destination,
    metrics: Optional[MetricsCollector] = None,
    dry_run: bool = False,
    show_progress: bool = False,
) -> MigrationResult:
    """
    Run both phases in order; the writer starts only after every node returned.

    Raises:
        ConfigurationError: before any I/O
        SourceQueryError: a node failed; nothing was written
        WriteError: a batch failed; the destination was rolled back
    """
    logger = get_logger()
    metrics = metrics or MetricsCollector()
    config.validate()

    logger.section(MSG_COLLECTING)
    query, params = build_read_query(config)
    collector = FanOutCollector(
        query_func,
        max_workers=config.max_workers,
        metrics=metrics,
        show_progress=show_progress,
    )
    merged = collector.collect(config.sources, query, params)
    collected = CollectSummary(
        rows_by_source=merged.counts_by_source(),
        duration=metrics.get_timer_stats("collect")["total"],
    )

    for name, count in sorted(collected.rows_by_source.items()):
        logger.info("Node rows", node=name, rows=count)

    if dry_run:
        logger.warning("Dry run, destination left untouched", rows=len(merged))
        return MigrationResult(collected=collected, written=None, dry_run=True)

    logger.section(MSG_WRITING)
    writer = BatchWriter.from_config(config, metrics=metrics)
    written = writer.write_all(merged, destination)
    return MigrationResult(collected=collected, written=written)


def _load_config(args) -> MigrationConfig:
    logger = get_logger()
    logger.info(MSG_LOADING_ENV)
    config = MigrationConfig.from_env(use_production=args.production, nodes=args.node)
    logger.info(
        "Environment loaded",
        environment=config.environment,
        nodes=len(config.sources),
    )
    return config


def migrate_command(args) -> int:
    """Copy matching rows from every node into the destination table."""
    logger = get_logger()
    logger.section("SHARD CONSOLIDATION")

    try:
        config = _load_config(args).with_overrides(
            batch_char_threshold=args.batch_chars,
            status_value=args.status,
            max_rows=args.limit,
            max_workers=args.workers,
        )
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return EXIT_CONFIG

    metrics = MetricsCollector()
    reader = SourceReader(connect_timeout=config.connect_timeout)
    destination = DestinationDatabase.from_config(config)

    try:
        before = None if args.dry_run else destination.count_rows(config.dest_table)
        result = run_migration(
            config,
            reader.fetch,
            destination,
            metrics=metrics,
            dry_run=args.dry_run,
            show_progress=not args.quiet,
        )

        if not args.quiet:
            print(metrics.format_summary())

        if result.dry_run:
            logger.success("Dry run complete", rows=result.collected.total_rows)
            return EXIT_OK

        after = destination.count_rows(config.dest_table)
        logger.success(
            "Consolidation completed successfully",
            rows=result.written.rows_written,
            batches=result.written.batches,
            table_before=before,
            table_after=after,
        )
        return EXIT_OK

    except KeyboardInterrupt:
        logger.warning("Operation cancelled by user")
        return EXIT_INTERRUPTED
    except SourceQueryError as e:
        logger.error("Collection failed, nothing written", failed=", ".join(e.failed_sources))
        return EXIT_FAILED
    except WriteError as e:
        logger.error(
            "Write failed, transaction rolled back",
            batch=e.batch_index,
            offset=e.row_offset,
            error=str(e.__cause__ or e),
        )
        return EXIT_FAILED
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return EXIT_CONFIG
    except Exception as e:
        logger.error("Consolidation failed", error=str(e))
        return EXIT_FAILED


def check_command(args) -> int:
    """Test connectivity to the destination and every node."""
    logger = get_logger()
    logger.section("CONNECTIVITY CHECK")

    try:
        config = _load_config(args)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return EXIT_CONFIG

    reader = SourceReader(connect_timeout=config.connect_timeout)
    destination = DestinationDatabase.from_config(config)

    ok = destination.test_connection()
    for source in config.sources:
        ok = reader.ping(source) and ok

    if ok:
        logger.success("All connections operational", nodes=len(config.sources))
        return EXIT_OK
    logger.error("Connectivity issues detected")
    return EXIT_FAILED


def nodes_command(args) -> int:
    """List configured source nodes; DSNs are not printed."""
    logger = get_logger()
    try:
        config = _load_config(args)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return EXIT_CONFIG

    for source in config.sources:
        logger.info("Node", name=source.name)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Consolidate rows from database shards into one table",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Global options
    parser.add_argument(
        '--production',
        action='store_true',
        help='Use production environment'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    parser.add_argument(
        '--quiet',
        action='store_true',
        help='No progress bar or metrics summary'
    )
    parser.add_argument(
        '--node',
        action='append',
        metavar='NAME=DSN',
        help='Source node (repeatable); replaces SOURCE_NODE_* variables'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    migrate_parser = subparsers.add_parser('migrate', help='Collect from nodes and write')
    migrate_parser.add_argument(
        '--batch-chars',
        type=int,
        help='Flush a batch once its statement text exceeds this many characters'
    )
    migrate_parser.add_argument(
        '--status',
        type=str,
        help='Status value rows must match on the source nodes'
    )
    migrate_parser.add_argument(
        '--limit',
        type=int,
        help='Maximum rows read from each node'
    )
    migrate_parser.add_argument(
        '--workers',
        type=int,
        help='Cap on parallel node queries (default: one per node)'
    )
    migrate_parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Collect and report counts without writing'
    )

    subparsers.add_parser('check', help='Test destination and node connectivity')
    subparsers.add_parser('nodes', help='List configured source nodes')

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        log_level = LogLevel.DEBUG
    elif args.quiet:
        log_level = LogLevel.WARNING
    else:
        log_level = LogLevel.INFO
    set_logger(StructuredLogger(min_level=log_level))

    if args.command == 'migrate':
        return migrate_command(args)
    elif args.command == 'check':
        return check_command(args)
    elif args.command == 'nodes':
        return nodes_command(args)
    else:
        parser.print_help()
        return EXIT_FAILED


if __name__ == '__main__':
    sys.exit(main())
