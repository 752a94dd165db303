from __future__ import annotations

import logging

import pytest


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture()
def clean_env(monkeypatch):
    monkeypatch.delenv("COMPILEDFILES_LOG_LEVEL", raising=False)
    monkeypatch.delenv("COMPILEDFILES_FORMAT", raising=False)
