from __future__ import annotations


class FixerError(RuntimeError):
    """Base class for every condition that aborts a fixer run."""


class FatalInputError(FixerError):
    """A required input file is missing, unreadable or structurally invalid."""


class FatalInconsistencyError(FixerError):
    """The fixed tables can no longer be reconciled with the genotype matrix."""


class ToolFailureError(FixerError):
    """An external tool timed out or exited non-zero."""

    def __init__(self, message: str, *, timed_out: bool = False, returncode: int | None = None) -> None:
        super().__init__(message)
        self.timed_out = timed_out
        self.returncode = returncode
