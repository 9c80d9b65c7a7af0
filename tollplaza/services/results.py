# tollplaza/services/results.py
"""
Tagged result returned by passage and detection operations.

success=False is a normal business outcome (conflict, not found, bad input),
not a transport error. `error` tells callers which one it was.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

ERROR_VALIDATION = "validation"
ERROR_CONFLICT = "conflict"
ERROR_NOT_FOUND = "not_found"

GATE_ALLOW = "allow"
GATE_DENY = "deny"
GATE_REQUIRE_PAYMENT = "require_payment"


@dataclass
class ServiceResult:
    success: bool
    message: str
    data: Any = None
    error: Optional[str] = None
    gate_action: str = GATE_DENY
    extra: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, data: Any = None, gate_action: str = GATE_ALLOW, **extra) -> "ServiceResult":
        return cls(True, message, data, None, gate_action, extra)

    @classmethod
    def conflict(cls, message: str, data: Any = None) -> "ServiceResult":
        return cls(False, message, data, ERROR_CONFLICT)

    @classmethod
    def not_found(cls, message: str, data: Any = None) -> "ServiceResult":
        return cls(False, message, data, ERROR_NOT_FOUND)

    @classmethod
    def invalid(cls, message: str, data: Any = None) -> "ServiceResult":
        return cls(False, message, data, ERROR_VALIDATION)
