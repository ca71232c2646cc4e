"""
Fan-out collector: one read task per source node, merged into a single
result set once every task has finished.
"""
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Sequence

from .config import validate_sources
from .errors import SourceQueryError
from .logger import get_logger
from .metrics import MetricsCollector, ProgressBar
from .models import CollectSummary, MergedResultSet, SourceDescriptor, SourceRecord


# (source, sql, params) -> rows; SourceReader.fetch in production
QueryFunc = Callable[[SourceDescriptor, str, Sequence], List[SourceRecord]]


class FanOutCollector:
    """
    Issues the same query against every source node in parallel.

    There is no per-node timeout or retry: a node that never answers
    keeps ``collect`` waiting. Any failed node fails the whole collection
    after all other nodes have finished.
    """

    def __init__(
        self,
        query_func: QueryFunc,
        max_workers: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
        show_progress: bool = False,
    ):
        self.query_func = query_func
        self.max_workers = max_workers
        self.metrics = metrics or MetricsCollector()
        self.show_progress = show_progress
        self.logger = get_logger()
        self.last_summary: Optional[CollectSummary] = None

    def collect(
        self,
        sources: Sequence[SourceDescriptor],
        query: str,
        params: Sequence = (),
    ) -> MergedResultSet:
        """
        Run ``query`` on every source and merge all returned rows.

        Args:
            sources: Source nodes; names must be unique
            query: SQL text with %s placeholders
            params: Values bound to the placeholders

        Returns:
            MergedResultSet holding every row from every node

        Raises:
            ConfigurationError: empty or duplicate sources
            SourceQueryError: at least one node failed
        """
        self.last_summary = None
        sources = list(sources)
        validate_sources(sources)

        merged = MergedResultSet()
        failures: Dict[str, BaseException] = {}
        workers = self.max_workers or len(sources)
        started = time.perf_counter()

        self.logger.info("Querying source nodes", nodes=len(sources), workers=workers)
        progress = ProgressBar(total=len(sources), desc="Nodes", enabled=self.show_progress)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="collector") as executor:
            futures = {
                executor.submit(self._collect_one, source, query, params, merged): source
                for source in sources
            }

            # as_completed drains every future, so failures never cut the join short
            for future in as_completed(futures):
                source = futures[future]
                try:
                    count = future.result()
                    self.logger.debug("Node finished", node=source.name, rows=count)
                except Exception as e:
                    failures[source.name] = e
                    self.logger.error(
                        "Node query failed",
                        node=source.name,
                        error=f"{type(e).__name__}: {e}",
                    )
                progress.update(1)

        progress.finish()
        duration = time.perf_counter() - started
        self.metrics.record_duration("collect", duration)

        if failures:
            self.metrics.record_count("nodes_failed", len(failures))
            raise SourceQueryError(failures)

        self.last_summary = CollectSummary(
            rows_by_source=merged.counts_by_source(),
            duration=duration,
        )
        self.logger.success(
            "Collection complete",
            nodes=len(sources),
            rows=len(merged),
            seconds=f"{duration:.2f}",
        )
        return merged

    def _collect_one(
        self,
        source: SourceDescriptor,
        query: str,
        params: Sequence,
        merged: MergedResultSet,
    ) -> int:
        logger = self.logger.bind(node=source.name)
        logger.debug("Querying node")

        with self.metrics.timed("node_query"):
            rows = self.query_func(source, query, params)

        count = merged.add_all(rows, source=source.name)
        self.metrics.record_count("rows_fetched", count)
        self.metrics.record_count(f"rows_fetched[{source.name}]", count)
        logger.info("Rows fetched", rows=count)
        return count
