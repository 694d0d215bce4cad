import os
import sys

import pytest


# Allow running pytest from either the repo root or from within `salvadorex/`.
# Tests import `salvadorex.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from salvadorex.app.store import LocalStore  # noqa: E402


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "pos.sqlite3")).initialize()


@pytest.fixture
def configured_store(store):
    store.set_setting("supabase_url", "https://example.supabase.co/")
    store.set_setting("supabase_key", "anon-key")
    return store
