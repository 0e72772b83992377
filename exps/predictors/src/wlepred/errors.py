"""Error kinds raised by the pipeline stages.

Each kind also derives from the builtin it specialises, so callers that only
catch ``KeyError``/``ValueError``/``FileNotFoundError`` keep working.
"""
from typing import Iterable, Optional, Union


class PipelineError(Exception):
    """Base class; carries the offending table and column(s) when known."""

    def __init__(self, message: str, table: Optional[str] = None,
                 column: Optional[Union[str, Iterable[str]]] = None):
        self.table = table
        if column is not None and not isinstance(column, str):
            column = list(column)
        self.column = column
        details = []
        if table is not None:
            details.append(f"table={table!r}")
        if column is not None:
            details.append(f"column={column!r}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0]) if self.args else ""


class SourceUnavailable(PipelineError, FileNotFoundError):
    """Neither a cached copy nor the remote source could be read."""


class InvalidFraction(PipelineError, ValueError):
    """Split fraction outside the open interval (0, 1)."""


class ColumnNotFound(PipelineError, KeyError):
    """A named column is absent from a table."""


class EmptyAfterPruning(PipelineError, ValueError):
    """A stage left a table without rows or without feature columns."""


class LabelMissing(PipelineError, KeyError):
    """The label column is absent from a table that must carry it."""
