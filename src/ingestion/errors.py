"""Exceptions raised by the ingestion pipeline."""


class IngestError(Exception):
    """Base class for ingestion failures."""


class FileDecodeError(IngestError):
    """
    An input file could not be read at all.

    Raised inside decode workers, so ``args`` must hold every constructor
    argument for the exception to survive pickling back to the parent.
    """

    def __init__(self, path: str, cause: BaseException):
        super().__init__(path, cause)
        self.path = path
        self.cause = cause

    def __str__(self) -> str:
        return f"Could not decode {self.path}: {self.cause}"


class StoreUnavailableError(IngestError):
    """The graph store could not be reached or prepared at startup."""
