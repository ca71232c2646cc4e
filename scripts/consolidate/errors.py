"""
Error taxonomy for consolidation runs.
Each phase surfaces one aggregate failure to the caller.
"""
from typing import Dict, List, Optional, Tuple


class MigrationError(Exception):
    """Base class for all consolidation failures."""


class ConfigurationError(MigrationError):
    """Raised before any I/O when sources or settings are unusable."""


class SourceQueryError(MigrationError):
    """One or more source nodes failed during the fan-out read."""

    def __init__(self, failures: Dict[str, BaseException]):
        self.failures = dict(failures)
        details = "; ".join(
            f"{name}: {type(exc).__name__}: {exc}"
            for name, exc in sorted(self.failures.items())
        )
        super().__init__(
            f"{len(self.failures)} source node(s) failed: {details}"
        )

    @property
    def failed_sources(self) -> List[str]:
        return sorted(self.failures)


class WriteError(MigrationError):
    """
    A batch execution failed; the whole destination transaction was rolled back.

    Attributes:
        batch_index: 1-based position of the failing batch
        row_offset: number of records handed to earlier batches
        rows: (sender, message) values of the failing batch
        statement: SQL text of the failing batch
    """

    def __init__(
        self,
        message: str,
        batch_index: int,
        row_offset: int,
        rows: List[Tuple[object, object]],
        statement: Optional[str] = None,
    ):
        self.batch_index = batch_index
        self.row_offset = row_offset
        self.rows = list(rows)
        self.statement = statement
        super().__init__(
            f"{message} (batch={batch_index}, offset={row_offset}, rows={len(self.rows)})"
        )
