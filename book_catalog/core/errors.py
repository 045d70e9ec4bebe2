from __future__ import annotations

from typing import List, Optional, Sequence

from book_catalog.core.models import ItemFailure


class CatalogError(RuntimeError):
    pass


class ValidationError(CatalogError):
    """Incoming record is malformed; the write is rejected before any mutation."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Book is missing required field(s): {', '.join(self.missing)}")


class ParseFailure(CatalogError):
    pass


class JobError(CatalogError):
    def __init__(self, message: str, failures: Optional[Sequence[ItemFailure]] = None) -> None:
        super().__init__(message)
        self.failures: List[ItemFailure] = list(failures or [])


class PerItemBulkFailure(JobError):
    """Some items of a bulk phase failed. Items that succeeded are not rolled back."""


class JobTerminalFailure(JobError):
    pass
