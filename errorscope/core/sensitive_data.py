"""
Redaction of secrets from occurrence data before it is stored.

Senior Engineering Note:
- On by default; operators who own their database may switch it off
- Keys are matched per word, so "user_password" and "apiKey" are caught
  while "spinner" does not trip the "pin" rule
- Card numbers are scrubbed from free text regardless of key names
"""
import re
from typing import Any, Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from errorscope.schemas.occurrence import OccurrenceReport

FILTERED = "[FILTERED]"

DEFAULT_SENSITIVE_KEYS = (
    # Passwords
    "password", "passphrase", "passwd",
    # API keys and tokens
    "token", "api_key", "api_secret", "secret", "private_key", "authorization",
    # Financial
    "credit_card", "card_number", "cc_number", "cvv", "cvc",
    # Personal identifiers
    "ssn", "social_security",
    # Session
    "session_id", "session_key", "cookie",
    # One-time codes
    "otp", "totp", "pin",
)

CARD_NUMBER_RE = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")
KEY_VALUE_RE = re.compile(r"(\w+)=(\S+)")
_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_key(key: str) -> str:
    """'apiKey' / 'API-Key' / 'api_key' -> 'api_key'."""
    return _CAMEL_BOUNDARY_RE.sub("_", key).lower().replace("-", "_")


class SensitiveDataFilter:
    """Scrubs message, request URL and extra context of an occurrence."""

    def __init__(self, extra_keys: Optional[Iterable[str]] = None, enabled: bool = True):
        self.enabled = enabled
        keys = {normalize_key(k) for k in DEFAULT_SENSITIVE_KEYS}
        keys.update(normalize_key(k) for k in (extra_keys or ()))
        self._needles = tuple(f"_{key}_" for key in sorted(keys))

    @classmethod
    def from_settings(cls, settings) -> "SensitiveDataFilter":
        return cls(
            extra_keys=settings.sensitive_data_keys,
            enabled=settings.filter_sensitive_data,
        )

    def is_sensitive_key(self, key: str) -> bool:
        padded = f"_{normalize_key(key)}_"
        return any(needle in padded for needle in self._needles)

    def filter_message(self, message: str) -> str:
        if not message:
            return message

        def replace(match: re.Match) -> str:
            key = match.group(1)
            if self.is_sensitive_key(key):
                return f"{key}={FILTERED}"
            return match.group(0)

        return CARD_NUMBER_RE.sub(FILTERED, KEY_VALUE_RE.sub(replace, message))

    def filter_url(self, url: Optional[str]) -> Optional[str]:
        if not url or "?" not in url:
            return url
        try:
            parts = urlsplit(url)
        except ValueError:
            # Unparseable URL; scrub it as free text instead
            return self.filter_message(url)
        params = [
            (key, FILTERED if self.is_sensitive_key(key) else CARD_NUMBER_RE.sub(FILTERED, value))
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
        ]
        return urlunsplit(parts._replace(query=urlencode(params, safe="[]")))

    def filter_value(self, value: Any) -> Any:
        """Recursively scrub dicts, lists and strings. Other values pass through."""
        if isinstance(value, dict):
            return {
                key: FILTERED if self.is_sensitive_key(str(key)) else self.filter_value(item)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self.filter_value(item) for item in value]
        if isinstance(value, str):
            return self.filter_message(value)
        return value

    def scrub(self, report: OccurrenceReport) -> OccurrenceReport:
        """Return a copy of the report safe to persist. Identity when disabled."""
        if not self.enabled:
            return report
        context = report.context
        request_info = context.request_info.model_copy(
            update={"url": self.filter_url(context.request_info.url)}
        )
        scrubbed_context = context.model_copy(
            update={
                "request_info": request_info,
                "extra": self.filter_value(context.extra),
            }
        )
        return report.model_copy(
            update={
                "message": self.filter_message(report.message),
                "context": scrubbed_context,
            }
        )
