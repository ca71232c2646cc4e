"""
Batch writer: drains merged rows into the destination table through one
transaction, flushing size-bounded multi-statement batches.
"""
import time
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import WriteError
from .logger import get_logger
from .metrics import MetricsCollector
from .models import MergedResultSet, SourceRecord, WriteSummary
from .transaction import WriteTransaction


class InsertBatch:
    """
    Pending inserts for one round-trip.

    Each row becomes its own ``INSERT`` statement with named placeholders
    numbered from zero within the batch, so the bindings must be cleared
    together with the text before the next batch starts.
    """

    def __init__(self, table: str, sender_column: str, message_column: str):
        self._template = (
            f"INSERT INTO {table} ({sender_column}, {message_column}) "
            "VALUES (%(sender_{i})s, %(message_{i})s);"
        )
        self._statements: List[str] = []
        self._length = 0
        self.params: Dict[str, object] = {}
        self.rows: List[Tuple[object, object]] = []

    def add(self, sender, message):
        i = len(self.rows)
        statement = self._template.format(i=i)
        self._statements.append(statement)
        self._length += len(statement)
        self.params[f"sender_{i}"] = sender
        self.params[f"message_{i}"] = message
        self.rows.append((sender, message))

    @property
    def statement(self) -> str:
        return "".join(self._statements)

    def exceeds(self, threshold: int) -> bool:
        return self._length > threshold

    def clear(self):
        self._statements.clear()
        self._length = 0
        self.params.clear()
        self.rows.clear()

    def __len__(self) -> int:
        return len(self.rows)

    def __bool__(self) -> bool:
        return bool(self.rows)


class BatchWriter:
    """
    Writes every record once, all or nothing.

    The batch is flushed as soon as its statement text grows past
    ``char_threshold`` and once more for the remainder. An empty input
    performs no executions but still commits its (empty) transaction.
    """

    def __init__(
        self,
        table: str,
        sender_column: str = "sender",
        message_column: str = "message",
        char_threshold: int = 1000,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.table = table
        self.sender_column = sender_column
        self.message_column = message_column
        self.char_threshold = char_threshold
        self.metrics = metrics or MetricsCollector()
        self.logger = get_logger()

    @classmethod
    def from_config(cls, config, metrics: Optional[MetricsCollector] = None) -> "BatchWriter":
        return cls(
            table=config.dest_table,
            sender_column=config.dest_sender_column,
            message_column=config.dest_message_column,
            char_threshold=config.batch_char_threshold,
            metrics=metrics,
        )

    def write_all(self, records: Iterable[SourceRecord], destination) -> WriteSummary:
        """
        Persist every record through a single destination transaction.

        Args:
            records: MergedResultSet (drained as it is written) or any iterable
            destination: object whose ``connection()`` is a context manager

        Returns:
            WriteSummary for the committed transaction

        Raises:
            WriteError: a batch or the commit failed; nothing was committed
        """
        source = records.drain() if isinstance(records, MergedResultSet) else iter(records)
        batch = InsertBatch(self.table, self.sender_column, self.message_column)
        sizes: List[int] = []
        written = 0
        started = time.perf_counter()

        self.logger.info(
            "Writing to destination",
            table=self.table,
            threshold=self.char_threshold,
        )

        try:
            with WriteTransaction(destination) as tx:
                for record in source:
                    batch.add(record.sender, record.message)
                    if batch.exceeds(self.char_threshold):
                        sizes.append(self._flush(tx, batch, len(sizes) + 1, written))
                        written += sizes[-1]

                if batch:
                    sizes.append(self._flush(tx, batch, len(sizes) + 1, written))
                    written += sizes[-1]
        except WriteError:
            self.metrics.record_count("write_failures")
            raise
        except Exception as e:
            self.metrics.record_count("write_failures")
            raise WriteError(
                f"Destination transaction failed: {type(e).__name__}: {e}",
                batch_index=len(sizes),
                row_offset=written,
                rows=[],
            ) from e

        duration = time.perf_counter() - started
        self.logger.success(
            "Write complete",
            rows=written,
            batches=len(sizes),
            seconds=f"{duration:.2f}",
        )
        return WriteSummary(
            rows_written=written,
            batches=len(sizes),
            committed=True,
            duration=duration,
            batch_sizes=sizes,
        )

    def _flush(self, tx: WriteTransaction, batch: InsertBatch, index: int, offset: int) -> int:
        """Execute one batch and reset it; returns the number of rows sent."""
        count = len(batch)
        statement = batch.statement
        self.logger.debug("Flushing batch", batch=index, rows=count, chars=len(statement))

        try:
            with self.metrics.timed("batch_execute"):
                tx.execute(statement, dict(batch.params))
        except Exception as e:
            self.logger.error("Batch failed", batch=index, offset=offset, error=str(e))
            raise WriteError(
                f"Batch insert failed: {type(e).__name__}: {e}",
                batch_index=index,
                row_offset=offset,
                rows=batch.rows,
                statement=statement,
            ) from e
        finally:
            batch.clear()

        self.metrics.record_count("batches_flushed")
        self.metrics.record_count("rows_written", count)
        return count
