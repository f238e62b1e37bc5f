"""Error taxonomy for the vesting engine.

Every error is raised before any state is mutated. All errors subclass
ValueError so callers that already treat validation failures as
ValueError keep working; the service layer maps each one to a stable
``code`` string for its ServiceResult.
"""

from __future__ import annotations


class VestingError(ValueError):
    """Base class for all engine rejections."""
    code = "vesting_error"


class Unauthorized(VestingError):
    """Caller is not the configured owner."""
    code = "unauthorized"

    def __init__(self, caller: str = "") -> None:
        msg = "Unauthorized"
        if caller:
            msg = f"Unauthorized: {caller} is not the owner"
        super().__init__(msg)
        self.caller = caller


class NotFound(VestingError):
    """Referenced obligation id does not exist."""
    code = "not_found"

    def __init__(self, obligation_id: int) -> None:
        super().__init__(f"Obligation not found: {obligation_id}")
        self.obligation_id = obligation_id


class AlreadyPaid(VestingError):
    code = "already_paid"

    def __init__(self, obligation_id: int) -> None:
        super().__init__(f"Obligation already paid: {obligation_id}")
        self.obligation_id = obligation_id


class AlreadyStopped(VestingError):
    code = "already_stopped"

    def __init__(self, obligation_id: int) -> None:
        super().__init__(f"Obligation already stopped: {obligation_id}")
        self.obligation_id = obligation_id


class InvalidObligation(VestingError):
    """A schedule entry is malformed (amount, asset or trigger)."""
    code = "invalid_obligation"


class InvalidPrincipal(VestingError):
    """A principal address failed validation."""
    code = "invalid_principal"


class NotInitialized(VestingError):
    """No configuration has been stored yet."""
    code = "not_initialized"

    def __init__(self) -> None:
        super().__init__("Vesting schedule not initialized — call initialize() first")


def validate_principal(address: object, field_name: str = "address") -> str:
    """Validate a principal address and return it unchanged.

    Authentication is done upstream; this only rejects values that could
    never be a real principal (empty, non-string, padded with whitespace).
    """
    if not isinstance(address, str):
        raise InvalidPrincipal(f"{field_name} must be a string, got {type(address).__name__}")
    if not address:
        raise InvalidPrincipal(f"{field_name} must not be empty")
    if address != address.strip() or any(c.isspace() for c in address):
        raise InvalidPrincipal(f"{field_name} must not contain whitespace: {address!r}")
    return address
