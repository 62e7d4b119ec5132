from typing import Optional


class InvalidId(ValueError):
    """Identifier is not well-formed for the configured backend."""

    def __init__(self, raw: object, state: Optional[str] = None) -> None:
        super().__init__(f"Invalid id: {raw!r}")
        self.raw = raw
        self.state = state


class NotFound(LookupError):
    def __init__(self, message: str, state: Optional[str] = None) -> None:
        super().__init__(message)
        self.state = state


class StoreError(RuntimeError):
    """Any read or write against the backing store failed."""

    def __init__(self, message: str, state: Optional[str] = None) -> None:
        super().__init__(message)
        self.state = state


class PartialReconciliation(StoreError):
    """A category batch update stopped after applying only part of its writes.

    The cached category amounts are inconsistent until the next successful
    recompute for the same user.
    """

    def __init__(
        self,
        message: str,
        *,
        applied: int,
        attempted: int,
        state: Optional[str] = None,
    ) -> None:
        super().__init__(message, state=state)
        self.applied = applied
        self.attempted = attempted


class RecomputeCancelled(RuntimeError):
    def __init__(self, state: Optional[str] = None) -> None:
        super().__init__(f"Recompute cancelled after state {state}")
        self.state = state
