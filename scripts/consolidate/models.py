"""
Data model shared by the collector and the writer.
"""
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Deque, Dict, Iterable, Iterator, List, Optional

from .errors import ConfigurationError


@dataclass(frozen=True)
class SourceDescriptor:
    """One source node: a display name plus its connection string."""
    name: str
    dsn: str = field(repr=False)

    @classmethod
    def parse(cls, value: str) -> "SourceDescriptor":
        """Parse a ``NAME=DSN`` string as given on the command line."""
        name, sep, dsn = value.partition("=")
        name = name.strip()
        dsn = dsn.strip()
        if not sep or not name or not dsn:
            raise ConfigurationError(
                f"Malformed node descriptor {value.split('=', 1)[0]!r}, expected NAME=DSN"
            )
        return cls(name=name.lower(), dsn=dsn)

    def __str__(self) -> str:
        # DSNs carry credentials
        return self.name


@dataclass(frozen=True)
class SourceRecord:
    """A single row read from a source node."""
    sender: Any
    message: Any
    ref: Any = None
    status: Any = None
    source: Optional[str] = None


class MergedResultSet:
    """
    Unordered collection filled concurrently by collector workers.

    Appends take the lock once per call, never per row, and keep the
    per-source counts in step with the items. Workers hand over all of
    their rows in one ``add_all``. No ordering is kept across sources.
    """

    def __init__(self, records: Optional[Iterable[SourceRecord]] = None):
        self._items: Deque[SourceRecord] = deque()
        self._lock = Lock()
        self._per_source: Dict[str, int] = {}
        if records is not None:
            self.add_all(records)

    def add(self, record: SourceRecord, source: Optional[str] = None):
        """Append one record, counted under ``source`` or the record's own source."""
        self.add_all((record,), source=source or record.source)

    def add_all(self, records: Iterable[SourceRecord], source: Optional[str] = None) -> int:
        """Append every record; returns how many were added."""
        batch = list(records)
        with self._lock:
            self._items.extend(batch)
            if source is not None:
                self._per_source[source] = self._per_source.get(source, 0) + len(batch)
        return len(batch)

    def counts_by_source(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._per_source)

    def drain(self) -> Iterator[SourceRecord]:
        """Yield and remove records until the collection is empty."""
        while True:
            try:
                yield self._items.popleft()
            except IndexError:
                return

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return len(self._items) > 0

    def __iter__(self) -> Iterator[SourceRecord]:
        with self._lock:
            snapshot = list(self._items)
        return iter(snapshot)


@dataclass
class CollectSummary:
    """Per-node row counts from one fan-out."""
    rows_by_source: Dict[str, int] = field(default_factory=dict)
    duration: float = 0.0

    @property
    def total_rows(self) -> int:
        return sum(self.rows_by_source.values())


@dataclass
class WriteSummary:
    """Outcome of a completed write phase."""
    rows_written: int
    batches: int
    committed: bool
    duration: float = 0.0
    batch_sizes: List[int] = field(default_factory=list)
