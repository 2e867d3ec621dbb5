"""
Severity classification for error types.

Operator rules (custom_severity_rules) win over the built-in lists; unknown
types default to low.
"""
from typing import Optional

from errorscope.models.error_group import Severity

CRITICAL_ERROR_TYPES = frozenset({
    "MemoryError",
    "RecursionError",
    "SystemError",
    "SecurityError",
    "SyntaxError",
    "ImportError",
    "ModuleNotFoundError",
    "OperationalError",
    "DatabaseError",
    "InterfaceError",
    "ConnectionError",
    "SSLError",
    "NoMemoryError",
    "SystemStackError",
})

HIGH_SEVERITY_ERROR_TYPES = frozenset({
    "AttributeError",
    "TypeError",
    "NameError",
    "KeyError",
    "IndexError",
    "ValueError",
    "ZeroDivisionError",
    "AssertionError",
    "UnboundLocalError",
    "IntegrityError",
    "NotImplementedError",
    "NoMethodError",
    "ArgumentError",
})

MEDIUM_SEVERITY_ERROR_TYPES = frozenset({
    "TimeoutError",
    "ReadTimeout",
    "ConnectTimeout",
    "ConnectionRefusedError",
    "JSONDecodeError",
    "UnicodeDecodeError",
    "ValidationError",
    "PermissionError",
    "FileNotFoundError",
})

SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 1.0,
    Severity.HIGH: 0.75,
    Severity.MEDIUM: 0.5,
    Severity.LOW: 0.25,
}

# Default triage priority (0 low .. 3 urgent) per severity
SEVERITY_PRIORITY = {
    Severity.CRITICAL: 3,
    Severity.HIGH: 2,
    Severity.MEDIUM: 1,
    Severity.LOW: 0,
}


class SeverityClassifier:
    """Maps an error type name to a Severity."""

    def __init__(self, custom_rules: Optional[dict[str, str]] = None):
        self.custom_rules = {
            error_type: Severity(level) for error_type, level in (custom_rules or {}).items()
        }

    def classify(self, error_type: str) -> Severity:
        if error_type in self.custom_rules:
            return self.custom_rules[error_type]

        # Match on the unqualified class name too ("requests.exceptions.ReadTimeout")
        short_name = error_type.rsplit(".", 1)[-1].rsplit("::", 1)[-1]
        for name in (error_type, short_name):
            if name in CRITICAL_ERROR_TYPES:
                return Severity.CRITICAL
            if name in HIGH_SEVERITY_ERROR_TYPES:
                return Severity.HIGH
            if name in MEDIUM_SEVERITY_ERROR_TYPES:
                return Severity.MEDIUM
        return Severity.LOW


def severity_weight(severity: Severity | str) -> float:
    return SEVERITY_WEIGHTS[Severity(severity)]


def default_priority(severity: Severity | str) -> int:
    return SEVERITY_PRIORITY[Severity(severity)]
