"""
Pytest config.

Pins the repo root on sys.path so `import dispenser` works even when pytest is
invoked through a global entrypoint without an editable install.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


@pytest.fixture(autouse=True)
def _reset_process_state() -> Iterator[None]:
    """Config is lru_cached and the server keeps a service singleton; reset both around each test."""
    from dispenser.api import server
    from dispenser.auth import oidc
    from dispenser.config import load_config

    load_config.cache_clear()
    server.set_token_service(None)
    oidc.clear_caches()
    yield
    load_config.cache_clear()
    server.set_token_service(None)
    oidc.clear_caches()
