"""Tests for logging setup."""

import logging

import pytest

from stackyard.lib.logging_config import get_logger, setup_logging


@pytest.fixture
def restore_logging():
    """Undo logger changes made by a test."""
    root = logging.getLogger("stackyard")
    handlers = list(root.handlers)
    level = root.level
    propagate = root.propagate
    yield
    root.handlers = handlers
    root.setLevel(level)
    root.propagate = propagate


@pytest.mark.unit
class TestGetLogger:
    """Tests for get_logger()."""

    def test_module_names_kept(self) -> None:
        """Package module names are already in the tree."""
        assert get_logger("stackyard.deploy.pipeline").name == "stackyard.deploy.pipeline"

    def test_bare_names_nested(self) -> None:
        """Foreign names are nested under the stackyard logger."""
        assert get_logger("tests").name == "stackyard.tests"


@pytest.mark.unit
@pytest.mark.usefixtures("restore_logging")
class TestSetupLogging:
    """Tests for setup_logging()."""

    @pytest.mark.parametrize(
        ("verbose", "quiet", "level"),
        [
            (False, False, logging.INFO),
            (True, False, logging.DEBUG),
            (False, True, logging.WARNING),
        ],
    )
    def test_levels(self, verbose: bool, quiet: bool, level: int) -> None:
        """Flags select the level of the stackyard tree."""
        setup_logging(verbose=verbose, quiet=quiet)

        assert logging.getLogger("stackyard").level == level

    def test_handler_installed_once(self) -> None:
        """Repeated setup does not duplicate output."""
        setup_logging()
        setup_logging(verbose=True)

        root = logging.getLogger("stackyard")
        ours = [h for h in root.handlers if getattr(h, "_stackyard", False)]
        assert len(ours) == 1

    def test_third_party_loggers_quieted(self) -> None:
        """Chatty libraries only log warnings unless verbose."""
        setup_logging()

        assert logging.getLogger("docker").level == logging.WARNING
