"""Exception types raised by the CICD comparison engine."""
from pathlib import Path
from typing import Optional, Union


class CicdError(Exception):
    """Base class for all engine errors."""


class TableNotFoundError(CicdError, FileNotFoundError):
    """A measurement table that must exist is absent."""

    def __init__(self, path: Union[str, Path], message: Optional[str] = None):
        self.path = Path(path)
        super().__init__(message or f"Measurement table not found: {self.path}")


class MissingBaselineFile(TableNotFoundError):
    """The reference table is absent; a capture run must happen first."""

    def __init__(self, path: Union[str, Path]):
        super().__init__(
            path,
            f"Reference table not found: {path} (capture a baseline before comparing)",
        )


class MalformedRow(CicdError, ValueError):
    """A data line of a measurement table could not be split."""

    def __init__(self, path: Union[str, Path], line_number: int, reason: str):
        self.path = Path(path)
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"{self.path}:{line_number}: {reason}")


class UnparseableNumeric(CicdError, ValueError):
    """A raw value is not a number in either the invariant or the current locale."""

    def __init__(self, raw: str):
        self.raw = raw
        super().__init__(f"Not a number: {raw!r}")


class InvalidStandardMutation(CicdError, ValueError):
    """A change to the acceptance standards would break a config invariant."""


class StandardNotFoundError(CicdError, KeyError):
    """No acceptance standard with the requested name exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"Acceptance standard not found: {self.name}"


class PersistenceFailure(CicdError, OSError):
    """Reading or writing a table or config file failed."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{reason}: {self.path}")

    def __str__(self) -> str:
        return f"{self.reason}: {self.path}"
