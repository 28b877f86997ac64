# src/strike_engine/errors.py

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class GameError(Exception):
    """Base exception for hard engine failures (never raised for bad input)."""
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")

# Stable reason codes
NOT_FOUND = "not_found"
FORBIDDEN = "forbidden"
INVALID_PHASE = "invalid_phase"
ALREADY_ACTED = "already_acted"
INVALID_TARGET = "invalid_target"
CAPACITY = "capacity"
ABILITY_UNAVAILABLE = "ability_unavailable"
INTERNAL_ERROR = "internal"

REASON_CODES = (
    NOT_FOUND,
    FORBIDDEN,
    INVALID_PHASE,
    ALREADY_ACTED,
    INVALID_TARGET,
    CAPACITY,
    ABILITY_UNAVAILABLE,
    INTERNAL_ERROR,
)


@dataclass
class ActionResult:
    """Outcome of one engine operation."""
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data) -> 'ActionResult':
        return cls(success=True, data=data)

    @classmethod
    def error(cls, code: str, message: str) -> 'ActionResult':
        return cls(success=False, error_code=code, error_message=message)

    def __bool__(self) -> bool:
        return self.success


# Helper function to raise hard failures
def raise_error(code: str, message: str):
    raise GameError(code, message)
