"""Tests for the PprintLogger and setup_logging functionality.

This module verifies:
- dict payloads are pretty-printed
- pprint=False uses simple string conversion
- pydantic models (entities, results) render via model_dump_json()
- setup_logging() names loggers after the calling module
- debug messages are skipped cheaply when DEBUG is disabled
"""

import logging
from io import StringIO

from versegraph.logging import PprintLogger, setup_logging
from versegraph.sync import ClassSyncReport

from tests.conftest import make_note


def capture(name: str, level: int = logging.DEBUG) -> tuple[PprintLogger, logging.StreamHandler]:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    handler = logging.StreamHandler(StringIO())
    handler.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    return PprintLogger(logger), handler


class TestPprintLogger:
    """Tests for PprintLogger formatting and delegation."""

    def test_pprint_formats_dict(self) -> None:
        pprint_logger, handler = capture("test.versegraph.dict")

        pprint_logger.info({"message": "Loaded seeds", "seeds": ["John-3-16"]})

        output = handler.stream.getvalue()
        assert "'message': 'Loaded seeds'" in output
        assert "John-3-16" in output

    def test_pprint_false_uses_str(self) -> None:
        pprint_logger, handler = capture("test.versegraph.str")

        pprint_logger.warning({"key": "value"}, pprint=False)

        assert str({"key": "value"}) in handler.stream.getvalue()

    def test_pydantic_model_uses_json(self) -> None:
        pprint_logger, handler = capture("test.versegraph.model")

        pprint_logger.info(make_note("n1", "John-3-16", "grace"))
        pprint_logger.error(ClassSyncReport(entity_class="edges", remote_available=False))

        output = handler.stream.getvalue()
        assert '"verse_id": "John-3-16"' in output
        assert '"remote_available": false' in output

    def test_debug_skipped_when_disabled(self) -> None:
        pprint_logger, handler = capture("test.versegraph.quiet", level=logging.INFO)

        pprint_logger.debug({"message": "hidden"})
        pprint_logger.info("shown")

        output = handler.stream.getvalue()
        assert "hidden" not in output
        assert "shown" in output

    def test_delegates_unknown_attributes(self) -> None:
        pprint_logger, _ = capture("test.versegraph.delegate")

        assert pprint_logger.name == "test.versegraph.delegate"
        assert pprint_logger.isEnabledFor(logging.DEBUG)


class TestSetupLogging:
    def test_named_after_calling_module(self) -> None:
        logger = setup_logging()

        assert logger.name == __name__

    def test_explicit_name_and_single_handler(self) -> None:
        first = setup_logging("versegraph.test.explicit")
        second = setup_logging("versegraph.test.explicit")

        assert first.name == "versegraph.test.explicit"
        assert len(second.handlers) == 1
