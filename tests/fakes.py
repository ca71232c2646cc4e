"""
In-memory stand-ins for the source query collaborator and the
destination connection, so both phases run without a database.
"""
import re
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional, Sequence

from consolidate.models import SourceDescriptor, SourceRecord


_PLACEHOLDER = re.compile(r"%\((sender|message)_(\d+)\)s")


class FakeDriverError(Exception):
    """Raised where a database driver would raise."""


class FakeSourceCluster:
    """Answers read queries from canned per-node rows."""

    def __init__(
        self,
        rows: Dict[str, List[SourceRecord]],
        failing: Sequence[str] = (),
        barrier: Optional[threading.Barrier] = None,
    ):
        self.rows = rows
        self.failing = set(failing)
        self.barrier = barrier
        self.calls: List[tuple] = []
        self.threads = set()
        self._lock = threading.Lock()

    def fetch(self, source: SourceDescriptor, query: str, params: Sequence = ()):
        with self._lock:
            self.calls.append((source.name, query, tuple(params)))
            self.threads.add(threading.get_ident())
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        if source.name in self.failing:
            raise FakeDriverError(f"could not connect to {source.name}")
        return list(self.rows.get(source.name, []))


class FakeCursor:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn
        self.rowcount = -1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, statement: str, params=None):
        self.conn.executions.append((statement, dict(params or {})))
        if self.conn.fail_on_batch == len(self.conn.executions):
            raise FakeDriverError("duplicate key value violates unique constraint")

        indexes = sorted({int(i) for _, i in _PLACEHOLDER.findall(statement)})
        # every placeholder must be bound and nothing unbound may linger
        expected = {f"{kind}_{i}" for i in indexes for kind in ("sender", "message")}
        if set(params) != expected:
            raise FakeDriverError(f"bindings {sorted(params)} do not match statement")

        for i in indexes:
            self.conn.pending.append((params[f"sender_{i}"], params[f"message_{i}"]))
        self.rowcount = len(indexes)


class FakeConnection:
    def __init__(self, table: List[tuple], fail_on_batch: Optional[int] = None,
                 fail_on_commit: bool = False):
        self.table = table
        self.fail_on_batch = fail_on_batch
        self.fail_on_commit = fail_on_commit
        self.pending: List[tuple] = []
        self.executions: List[tuple] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self.autocommit = False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        if self.fail_on_commit:
            raise FakeDriverError("server closed the connection unexpectedly")
        self.table.extend(self.pending)
        self.pending = []
        self.commits += 1

    def rollback(self):
        self.pending = []
        self.rollbacks += 1

    def close(self):
        self.closed = True


class FakeDestination:
    """Destination table whose rows only change on commit."""

    def __init__(self, existing: Sequence[tuple] = (), fail_on_batch: Optional[int] = None,
                 fail_on_commit: bool = False, fail_on_connect: bool = False):
        self.table: List[tuple] = list(existing)
        self.fail_on_batch = fail_on_batch
        self.fail_on_commit = fail_on_commit
        self.fail_on_connect = fail_on_connect
        self.connections: List[FakeConnection] = []

    @contextmanager
    def connection(self):
        if self.fail_on_connect:
            raise FakeDriverError("connection refused")
        conn = FakeConnection(self.table, self.fail_on_batch, self.fail_on_commit)
        self.connections.append(conn)
        try:
            yield conn
        finally:
            conn.close()

    @property
    def executions(self):
        return [e for conn in self.connections for e in conn.executions]


def make_records(node: str, count: int) -> List[SourceRecord]:
    return [
        SourceRecord(
            sender=f"{node}-sender-{i}",
            message=f"message {i} from {node}",
            ref=i,
            status="pending",
            source=node,
        )
        for i in range(count)
    ]
