"""Error taxonomy surfaced by the tracker store and lifecycle engine."""

from __future__ import annotations


class RadialError(RuntimeError):
    """Base error with a stable machine-readable code."""

    code = "error"


class NotFoundError(RadialError):
    """A goal or task id does not resolve."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str, *, suggestion: str | None = None) -> None:
        message = f"{entity.capitalize()} not found: {entity_id}"
        if suggestion is not None:
            message += f"\nDid you mean: {suggestion}"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id
        self.suggestion = suggestion


class InvalidStateError(RadialError):
    """Operation is not permitted from the entity's current state."""

    code = "invalid_state"

    def __init__(self, entity_id: str, state: str, message: str) -> None:
        super().__init__(message)
        self.entity_id = entity_id
        self.state = state


class ContractRequiredError(InvalidStateError):
    """Task cannot start because no contract has been set."""

    def __init__(self, entity_id: str, state: str) -> None:
        super().__init__(
            entity_id,
            state,
            "Task has no contract. Set a contract before starting.\n"
            f'Use: rd edit task {entity_id} --receives "..." --produces "..." --verify "..."',
        )


class ConcurrencyConflictError(RadialError):
    """Conditional update lost a race against another process."""

    code = "concurrency_conflict"

    def __init__(self, entity_id: str, operation: str) -> None:
        super().__init__(
            f"Failed to {operation} task {entity_id}: its state was changed concurrently "
            "by another process. Re-read the task and retry the command.",
        )
        self.entity_id = entity_id
        self.operation = operation


class ValidationError(RadialError):
    """Input rejected before anything was written."""

    code = "validation"


class DuplicateIdError(ValidationError):
    """Generated id already exists in the store."""


class StorageError(RadialError):
    """I/O failure, lock timeout, or corrupt record."""

    code = "storage"


class StoreNotInitializedError(StorageError):
    """No ``.radial`` store could be located."""

    def __init__(self) -> None:
        super().__init__("Radial not initialized. Run 'rd init' first.")
