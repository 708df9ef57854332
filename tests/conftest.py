"""Shared pytest fixtures."""

import sys
import os
import copy

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from plyscope.config.config_loader import ConfigLoader


@pytest.fixture(scope="session")
def qt_app():
    """QCoreApplication so queued signal deliveries can be processed."""
    from PyQt6.QtCore import QCoreApplication
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


@pytest.fixture(scope="session")
def base_config():
    """Bundled configuration, loaded once."""
    return ConfigLoader().load()


@pytest.fixture
def config(base_config):
    """Configuration with short timeouts suitable for tests."""
    test_config = copy.deepcopy(base_config)
    test_config["engine"]["handshake_timeout_s"] = 1.0
    test_config["engine"]["read_poll_s"] = 0.01
    test_config["engine"]["options"] = {}
    test_config["analysis"]["timeout_ms"] = 2000
    return test_config
