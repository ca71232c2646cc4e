"""
PostgreSQL access for source nodes and the destination.
Source reads use a short-lived read-only connection per node; the
destination hands out one explicit-transaction connection at a time.
"""
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence
import psycopg2
from psycopg2.extensions import connection as Connection

from .config import MigrationConfig
from .logger import get_logger
from .models import SourceDescriptor, SourceRecord


class SourceReader:
    """
    Runs the read query against one source node and maps rows to records.

    Rows are expected as ``(ref, sender, message, status)``, the column
    order produced by ``build_read_query``.
    """

    def __init__(self, connect_timeout: int = 30):
        self.connect_timeout = connect_timeout

    def fetch(
        self,
        source: SourceDescriptor,
        query: str,
        params: Sequence = (),
    ) -> List[SourceRecord]:
        conn = psycopg2.connect(source.dsn, connect_timeout=self.connect_timeout)
        try:
            conn.set_session(readonly=True)
            with conn.cursor() as cur:
                cur.execute(query, tuple(params) or None)
                rows = cur.fetchall()
            conn.rollback()
        finally:
            conn.close()

        return [
            SourceRecord(ref=ref, sender=sender, message=message, status=status, source=source.name)
            for ref, sender, message, status in rows
        ]

    def ping(self, source: SourceDescriptor) -> bool:
        """Check that the node accepts connections."""
        logger = get_logger().bind(node=source.name)
        try:
            conn = psycopg2.connect(source.dsn, connect_timeout=self.connect_timeout)
        except psycopg2.Error as e:
            logger.error("Node connection failed", error=str(e).strip())
            return False
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT version()")
                version = cur.fetchone()[0]
            logger.info("Node connected", version=version[:50])
            return True
        finally:
            conn.close()


class DestinationDatabase:
    """Destination connection collaborator used by the batch writer."""

    def __init__(self, dsn: str, connect_timeout: int = 30):
        self.dsn = dsn
        self.connect_timeout = connect_timeout
        self.logger = get_logger()

    @classmethod
    def from_config(cls, config: MigrationConfig) -> "DestinationDatabase":
        return cls(config.database_url, connect_timeout=config.connect_timeout)

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """
        Open a connection with explicit transactions.
        The caller commits or rolls back; the connection is always closed.
        """
        conn = psycopg2.connect(self.dsn, connect_timeout=self.connect_timeout)
        try:
            conn.autocommit = False
            yield conn
        finally:
            conn.close()

    def test_connection(self) -> bool:
        try:
            with self.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT version()")
                    version = cur.fetchone()[0]
                conn.rollback()
            self.logger.info("Destination connected", version=version[:50])
            return True
        except psycopg2.Error as e:
            self.logger.error("Destination connection failed", error=str(e).strip())
            return False

    def count_rows(self, table: str) -> Optional[int]:
        """Row count of ``table``, or None when it does not exist."""
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass(%s)", (table,))
                if cur.fetchone()[0] is None:
                    conn.rollback()
                    return None
                # table is a validated identifier from MigrationConfig
                cur.execute(f"SELECT COUNT(*) FROM {table}")
                count = cur.fetchone()[0]
            conn.rollback()
        return count
