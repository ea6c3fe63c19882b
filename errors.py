from typing import Optional


class VendorSpendError(Exception):
    pass


class ValidationError(VendorSpendError, ValueError):
    """Malformed input, rejected before anything is written."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(VendorSpendError, LookupError):
    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class LockedStateError(VendorSpendError):
    def __init__(self, scenario_id: str) -> None:
        super().__init__(f"Scenario is locked: {scenario_id}")
        self.scenario_id = scenario_id


class IntegrityError(VendorSpendError):
    """Stored or derived state contradicts an invariant the write path enforces."""
