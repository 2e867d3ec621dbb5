"""
Unit tests for fingerprint generation.

Tests cover:
- Line-number drift does not split a group
- Library frames are skipped when picking the origin frame
- Accepted backtrace shapes (Python traceback, frame lists, dicts)
- Catch-all fallback when a custom strategy misbehaves
- Strategy loading from an import path
"""
import pytest

from errorscope.config import load_settings
from errorscope.core.fingerprint import (
    DefaultFingerprintStrategy,
    ErrorDescription,
    FingerprintGenerator,
    FingerprintStrategy,
    catch_all_fingerprint,
    load_strategy,
    parse_frames,
)
from errorscope.errors import ConfigurationError


class ExplodingStrategy(FingerprintStrategy):
    def fingerprint(self, description: ErrorDescription, context: dict) -> str:
        raise RuntimeError("boom")


class EmptyKeyStrategy(FingerprintStrategy):
    def fingerprint(self, description: ErrorDescription, context: dict) -> str:
        return ""


class MessageStrategy(FingerprintStrategy):
    """Groups by type and message; used to test loading by import path."""

    def fingerprint(self, description: ErrorDescription, context: dict) -> str:
        return f"{description.error_type}:{description.message}"


PYTHON_TRACEBACK = """Traceback (most recent call last):
  File "/srv/shop/app/views.py", line 42, in checkout
    total = compute_total(cart)
  File "/srv/shop/app/pricing.py", line 17, in compute_total
    return sum(item.price for item in cart)
  File "/usr/lib/python3.12/site-packages/decimal_helpers/core.py", line 88, in add
    raise ValueError("bad price")
ValueError: bad price"""


class TestParseFrames:
    """Test backtrace parsing into innermost-first frames."""

    def test_python_traceback_is_reversed(self):
        frames = parse_frames(PYTHON_TRACEBACK)

        assert [f.function for f in frames] == ["add", "compute_total", "checkout"]
        assert frames[1].path == "/srv/shop/app/pricing.py"
        assert frames[1].line == 17

    def test_frame_string_list(self):
        frames = parse_frames([
            "app/models/user.rb:12:in `save'",
            "app/controllers/users_controller.rb:30:in `create'",
        ])

        assert frames[0].path == "app/models/user.rb"
        assert frames[0].function == "save"
        assert frames[0].line == 12
        assert frames[1].function == "create"

    def test_dict_frames(self):
        frames = parse_frames([{"filename": "./api/handlers.py", "lineno": 9, "function": "get"}])

        assert frames[0].path == "api/handlers.py"
        assert frames[0].location == "api/handlers.py:get"

    def test_empty_origin(self):
        assert parse_frames(None) == []
        assert parse_frames("") == []
        assert parse_frames([]) == []


class TestDefaultStrategy:
    """Test the type + origin frame grouping rule."""

    @pytest.fixture
    def generator(self):
        return FingerprintGenerator()

    def test_line_drift_keeps_same_fingerprint(self, generator):
        before = generator.fingerprint("KeyError", ["app/cart.py:10:in add_item"])
        after = generator.fingerprint("KeyError", ["app/cart.py:57:in add_item"])

        assert before == after

    def test_different_function_or_type_splits(self, generator):
        base = generator.fingerprint("KeyError", ["app/cart.py:10:in add_item"])

        assert base != generator.fingerprint("KeyError", ["app/cart.py:10:in remove_item"])
        assert base != generator.fingerprint("IndexError", ["app/cart.py:10:in add_item"])

    def test_library_frames_are_skipped(self, generator):
        via_requests = generator.fingerprint("ConnectionError", [
            "/venv/lib/python3.12/site-packages/requests/adapters.py:501:in send",
            "app/payments.py:22:in charge",
        ])
        via_urllib = generator.fingerprint("ConnectionError", [
            "/venv/lib/python3.12/site-packages/urllib3/connection.py:200:in connect",
            "app/payments.py:22:in charge",
        ])

        assert via_requests == via_urllib

    def test_library_only_trace_uses_innermost_frame(self):
        strategy = DefaultFingerprintStrategy()
        frames = parse_frames(["/gems/rack/lib/rack.rb:1:in call", "/gems/puma/lib/puma.rb:5:in run"])

        assert strategy.origin_frame(frames).path == "/gems/rack/lib/rack.rb"

    def test_python_traceback_groups_on_application_frame(self, generator):
        fingerprint = generator.fingerprint("ValueError", PYTHON_TRACEBACK)
        expected = generator.fingerprint("ValueError", ['File "/srv/shop/app/pricing.py", line 1, in compute_total'])

        assert fingerprint == expected

    def test_fingerprint_is_short_hex(self, generator):
        fingerprint = generator.fingerprint("ValueError", None)

        assert len(fingerprint) == 16
        int(fingerprint, 16)


class TestFallback:
    """A failing custom strategy must never lose the occurrence."""

    def test_raising_strategy_falls_back_to_catch_all(self):
        generator = FingerprintGenerator(strategy=ExplodingStrategy())

        assert generator.fingerprint("ValueError", "app.py:1") == catch_all_fingerprint("ValueError")

    def test_empty_key_falls_back_to_catch_all(self):
        generator = FingerprintGenerator(strategy=EmptyKeyStrategy())

        assert generator.fingerprint("TypeError", None) == catch_all_fingerprint("TypeError")

    def test_catch_all_differs_per_type(self):
        assert catch_all_fingerprint("ValueError") != catch_all_fingerprint("TypeError")


class TestLoadStrategy:
    """Test loading operator strategies from settings."""

    def test_load_class_by_path(self):
        strategy = load_strategy(f"{__name__}:MessageStrategy")

        assert isinstance(strategy, MessageStrategy)

    def test_unknown_module_raises(self):
        with pytest.raises(ConfigurationError):
            load_strategy("does.not.exist:Strategy")

    def test_non_strategy_attribute_raises(self):
        with pytest.raises(ConfigurationError):
            load_strategy("errorscope.core.fingerprint:hash_key")

    def test_from_settings_uses_custom_strategy(self):
        settings = load_settings(fingerprint_strategy=f"{__name__}:MessageStrategy")
        generator = FingerprintGenerator.from_settings(settings)

        assert generator.fingerprint("ValueError", None, message="bad") == "ValueError:bad"
