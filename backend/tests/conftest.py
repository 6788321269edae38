import os
import sys
from pathlib import Path

import pytest


# Ensure `import feedesk...` resolves when tests run from repo root.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))


# Minimal defaults so settings can initialize in test environments.
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("GATEWAY_WEBHOOK_SECRET", "gw_test_secret")


@pytest.fixture(autouse=True)
def isolated_idempotency_store(tmp_path, monkeypatch):
    """Latches and seen-events from one test must never leak into the next."""
    from feedesk.utils import idempotency

    monkeypatch.setattr(idempotency, "_DEFAULT_DB_PATH", str(tmp_path / "idempotency.sqlite3"))
