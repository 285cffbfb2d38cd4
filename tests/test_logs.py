"""Tests for logs.py - diagnostic logging setup."""

import logging

from terse.config import TerseConfig
from terse.logs import configure_logging, log_file_path


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_writes_to_terse_home(self, terse_home, restore_terse_logger):
        """Test records go to `<terse home>/terse.log`."""
        handler = configure_logging(TerseConfig())
        assert isinstance(handler, logging.FileHandler)
        assert log_file_path() == terse_home / "terse.log"

        logging.getLogger("terse.router").info("routed %s", "git status")
        handler.flush()

        text = log_file_path().read_text(encoding="utf-8")
        assert "INFO terse.router: routed git status" in text

    def test_level(self, tmp_path, restore_terse_logger):
        """Test the configured level filters records."""
        config = TerseConfig()
        config.logging.level = "WARN"
        path = tmp_path / "diag.log"
        handler = configure_logging(config, path)

        logging.getLogger("terse.hook").info("hidden")
        logging.getLogger("terse.hook").warning("shown")
        handler.flush()

        text = path.read_text(encoding="utf-8")
        assert "shown" in text
        assert "hidden" not in text
        assert restore_terse_logger.level == logging.WARNING

    def test_unknown_level_defaults_to_info(self, tmp_path, restore_terse_logger):
        """Test an unrecognized level means info."""
        config = TerseConfig()
        config.logging.level = "chatty"
        configure_logging(config, tmp_path / "x.log")
        assert restore_terse_logger.level == logging.INFO

    def test_disabled(self, terse_home, restore_terse_logger):
        """Test disabled logging installs a NullHandler and writes nothing."""
        config = TerseConfig()
        config.logging.enabled = False
        handler = configure_logging(config)

        assert isinstance(handler, logging.NullHandler)
        logging.getLogger("terse").error("nothing")
        assert not log_file_path().exists()

    def test_unwritable_path(self, tmp_path, restore_terse_logger):
        """Test an unusable log path falls back to a NullHandler."""
        blocker = tmp_path / "blocker"
        blocker.write_text("file")
        handler = configure_logging(TerseConfig(), blocker / "terse.log")
        assert isinstance(handler, logging.NullHandler)

    def test_reconfigure_replaces_handlers(self, tmp_path, restore_terse_logger):
        """Test calling twice leaves a single handler without propagation."""
        configure_logging(TerseConfig(), tmp_path / "a.log")
        configure_logging(TerseConfig(), tmp_path / "b.log")
        assert len(restore_terse_logger.handlers) == 1
        assert restore_terse_logger.propagate is False
