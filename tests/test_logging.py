"""Tests for logging setup (utils/logging.py)."""

from __future__ import annotations

import logging

import pytest

from cnnfeat.utils.logging import configure_logging, get_logger


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    configure_logging("INFO")


def test_console_only_by_default():
    assert configure_logging("INFO") is None
    assert logging.getLogger().level == logging.INFO


def test_file_named_after_run(tmp_path):
    path = configure_logging("DEBUG", tmp_path / "logs", run_name="fit-pca")
    assert path.parent == tmp_path / "logs"
    assert path.name.startswith("fit-pca_") and path.suffix == ".log"

    get_logger("cnnfeat.tests").debug("calibration | pca 10 -> 2")
    assert "calibration | pca 10 -> 2" in path.read_text()


def test_reconfigure_replaces_handlers(tmp_path):
    first = configure_logging("INFO", tmp_path / "a")
    root = logging.getLogger()
    n_handlers = len(root.handlers)

    second = configure_logging("WARNING", tmp_path / "b")
    assert len(root.handlers) == n_handlers
    assert root.level == logging.WARNING

    logger = get_logger("cnnfeat.tests")
    logger.warning("extractor | dropping scales")
    logger.info("geometry | not shown")
    assert "dropping scales" not in first.read_text()
    assert "dropping scales" in second.read_text()
    assert "not shown" not in second.read_text()
