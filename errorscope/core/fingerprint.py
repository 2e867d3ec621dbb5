"""
Fingerprint generation for error grouping.

Senior Engineering Note:
- Same error type + same application frame => same group, regardless of line drift
- Library frames are skipped so a shared framework frame does not merge unrelated bugs
- Operator strategies plug in via FingerprintStrategy; any failure falls back
  to a per-type catch-all key instead of losing the occurrence
"""
import hashlib
import importlib
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from errorscope.errors import ConfigurationError

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 16
CATCH_ALL_LOCATION = "catch-all"
PYTHON_TRACEBACK_HEADER = "Traceback (most recent call last):"

DEFAULT_LIBRARY_MARKERS = (
    "site-packages",
    "dist-packages",
    "/lib/python",
    "<frozen",
    "/gems/",
    "node_modules",
)

_PYTHON_FRAME = re.compile(
    r'File "(?P<path>[^"]+)", line (?P<line>\d+)(?:, in (?P<func>\S+))?'
)
_GENERIC_FRAME = re.compile(
    r"^\s*(?:at\s+)?(?P<path>[^\s:][^:]*?):(?P<line>\d+)(?::\d+)?"
    r"(?::?\s*in\s+[`'\"]?(?P<func>[^`'\"\s]+)[`'\"]?)?\s*$"
)

OriginLocation = Union[None, str, list[str], list[dict[str, Any]]]


@dataclass(frozen=True)
class Frame:
    """A normalised stack frame. Line numbers are kept for display only."""

    path: str
    function: str = ""
    line: Optional[int] = None

    @property
    def location(self) -> str:
        return f"{self.path}:{self.function}" if self.function else self.path


@dataclass
class ErrorDescription:
    """What a fingerprint strategy gets to look at."""

    error_type: str
    message: str = ""
    frames: list[Frame] = field(default_factory=list)


def parse_frames(origin_location: OriginLocation) -> list[Frame]:
    """
    Parse an origin location into frames ordered innermost first.

    Accepts a newline separated backtrace, a list of frame strings or a list
    of dicts with filename/lineno/function keys. A Python traceback string
    (outermost first) is reversed.
    """
    if not origin_location:
        return []

    if isinstance(origin_location, str):
        text = origin_location.strip()
        if text.startswith(PYTHON_TRACEBACK_HEADER):
            frames = [
                _frame_from_match(m) for m in _PYTHON_FRAME.finditer(text)
            ]
            return list(reversed(frames))
        lines = [line for line in text.splitlines() if line.strip()]
        return [_parse_frame_string(line) for line in lines]

    frames = []
    for entry in origin_location:
        if isinstance(entry, dict):
            path = str(entry.get("filename") or entry.get("file") or entry.get("path") or "")
            function = str(entry.get("function") or entry.get("name") or "")
            lineno = entry.get("lineno") or entry.get("line")
            frames.append(
                Frame(
                    path=_normalize_path(path),
                    function=function,
                    line=int(lineno) if lineno is not None else None,
                )
            )
        else:
            frames.append(_parse_frame_string(str(entry)))
    return frames


def _frame_from_match(match: re.Match) -> Frame:
    return Frame(
        path=_normalize_path(match.group("path")),
        function=match.group("func") or "",
        line=int(match.group("line")),
    )


def _parse_frame_string(line: str) -> Frame:
    match = _PYTHON_FRAME.search(line) or _GENERIC_FRAME.match(line)
    if match:
        return _frame_from_match(match)
    return Frame(path=_normalize_path(line.strip()))


def _normalize_path(path: str) -> str:
    path = path.strip().replace("\\", "/")
    if path.startswith("./"):
        path = path[2:]
    return path


def hash_key(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:FINGERPRINT_LENGTH]


def catch_all_fingerprint(error_type: str) -> str:
    """Per-type key used when fingerprinting fails."""
    return hash_key(error_type, CATCH_ALL_LOCATION)


class FingerprintStrategy(ABC):
    """
    Pluggable grouping strategy.

    Implementations must be deterministic: the same description and context
    must always yield the same key.
    """

    @abstractmethod
    def fingerprint(self, description: ErrorDescription, context: dict) -> str:
        """Return the grouping key for an error."""
        pass


class DefaultFingerprintStrategy(FingerprintStrategy):
    """Error type + top-most application frame (path and function, no line)."""

    def __init__(self, library_markers: Optional[list[str]] = None):
        self.library_markers = tuple(library_markers or DEFAULT_LIBRARY_MARKERS)

    def is_library_frame(self, frame: Frame) -> bool:
        return any(marker in frame.path for marker in self.library_markers)

    def origin_frame(self, frames: list[Frame]) -> Optional[Frame]:
        for frame in frames:
            if not self.is_library_frame(frame):
                return frame
        # Entirely library code: the innermost frame is still better than nothing
        return frames[0] if frames else None

    def fingerprint(self, description: ErrorDescription, context: dict) -> str:
        frame = self.origin_frame(description.frames)
        location = frame.location if frame else ""
        return hash_key(description.error_type, location)


def load_strategy(import_path: str) -> FingerprintStrategy:
    """
    Load an operator strategy from 'package.module:attribute'.

    The attribute may be a FingerprintStrategy subclass (instantiated with no
    arguments) or an instance. Raises ConfigurationError otherwise.
    """
    module_name, _, attribute = import_path.partition(":")
    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attribute)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            f"Cannot load fingerprint strategy '{import_path}': {e}"
        ) from e

    if isinstance(target, type) and issubclass(target, FingerprintStrategy):
        return target()
    if isinstance(target, FingerprintStrategy):
        return target
    raise ConfigurationError(
        f"Fingerprint strategy '{import_path}' is not a FingerprintStrategy"
    )


class FingerprintGenerator:
    """
    Computes the grouping key for an occurrence. Never raises.

    A custom strategy, when configured, takes full precedence over the default.
    """

    def __init__(
        self,
        strategy: Optional[FingerprintStrategy] = None,
        library_markers: Optional[list[str]] = None,
    ):
        self.default_strategy = DefaultFingerprintStrategy(library_markers)
        self.strategy = strategy or self.default_strategy

    @classmethod
    def from_settings(cls, settings) -> "FingerprintGenerator":
        strategy = None
        if settings.fingerprint_strategy:
            strategy = load_strategy(settings.fingerprint_strategy)
            logger.info(f"Using custom fingerprint strategy {settings.fingerprint_strategy}")
        return cls(strategy=strategy, library_markers=settings.library_path_markers)

    def describe(
        self,
        error_type: str,
        origin_location: OriginLocation,
        message: str = "",
    ) -> ErrorDescription:
        return ErrorDescription(
            error_type=error_type,
            message=message,
            frames=parse_frames(origin_location),
        )

    def fingerprint(
        self,
        error_type: str,
        origin_location: OriginLocation,
        context: Optional[dict] = None,
        message: str = "",
    ) -> str:
        """
        Args:
            error_type: Exception class name
            origin_location: Backtrace in any accepted shape
            context: Occurrence context handed to custom strategies
            message: Error message handed to custom strategies

        Returns:
            16 hex character grouping key
        """
        try:
            description = self.describe(error_type, origin_location, message)
            key = self.strategy.fingerprint(description, dict(context or {}))
            if not isinstance(key, str) or not key:
                raise ValueError(f"strategy returned invalid key {key!r}")
            return key
        except Exception as e:
            logger.warning(
                f"Fingerprinting failed for {error_type}, using catch-all key: {e}",
                exc_info=True,
                extra={"error_type": error_type},
            )
            return catch_all_fingerprint(error_type)
