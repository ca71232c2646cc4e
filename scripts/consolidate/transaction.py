"""
Single-connection transaction scope for the destination database.
"""
from contextlib import ExitStack

from .config import STATUS_COMPLETE, STATUS_PENDING, STATUS_PROCESSING, STATUS_ROLLED_BACK
from .logger import get_logger


class WriteTransaction:
    """
    Holds one destination connection and one transaction for a whole write.

    Commits exactly once on clean exit, rolls back when the block raises,
    and closes the connection on every path.
    """

    def __init__(self, destination):
        self.destination = destination
        self.logger = get_logger()

        self.status = STATUS_PENDING
        self._stack = None
        self._db_conn = None

    @property
    def connection(self):
        return self._db_conn

    def __enter__(self):
        self._stack = ExitStack()
        try:
            self._db_conn = self._stack.enter_context(self.destination.connection())
        except BaseException:
            self._stack.close()
            self._stack = None
            raise
        self.status = STATUS_PROCESSING
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self.rollback()
            elif self.status == STATUS_PROCESSING:
                self.commit()
        finally:
            self._db_conn = None
            stack, self._stack = self._stack, None
            if stack is not None:
                stack.close()

        return False

    def execute(self, statement: str, params):
        """Run one statement with bound parameters inside the transaction."""
        with self._db_conn.cursor() as cur:
            cur.execute(statement, params)
            return cur.rowcount

    def commit(self):
        self.logger.info("Committing transaction")
        try:
            self._db_conn.commit()
        except Exception as e:
            self.logger.error("Commit failed, rolling back", error=str(e))
            self.rollback()
            raise
        self.status = STATUS_COMPLETE
        self.logger.success("Transaction committed")

    def rollback(self):
        self.logger.warning("Rolling back transaction")
        try:
            self._db_conn.rollback()
        except Exception as e:
            # the triggering error still propagates
            self.logger.error("Rollback failed", error=str(e))
        self.status = STATUS_ROLLED_BACK
