# tests/conftest.py
import os
import sys
import random
from unittest.mock import MagicMock

import pytest

# 1. Make sure `src/` (and the repo root, for tests.fixtures) is on the import path:
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
sys.path.insert(0, os.path.join(ROOT, "src"))
sys.path.insert(0, ROOT)

from config.settings import SyncConfig  # noqa: E402
from data.services.change_detector import ChangeDetector  # noqa: E402
from data.services.sync_orchestrator import SyncOrchestrator  # noqa: E402
from data.storage.object_lock import ObjectStoreLockClient  # noqa: E402
from utils.cancellation import CancellationToken  # noqa: E402
from tests.fixtures.storage_fixtures import (  # noqa: E402
    FakeClock,
    FakeNotifier,
    FakeObjectStore,
    FakeTransfer,
)

BUCKET = "test-bucket"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return FakeObjectStore(clock)


@pytest.fixture
def cancel_token():
    return CancellationToken()


@pytest.fixture
def make_lock_client(store, clock, cancel_token):
    """Factory for lock clients sharing one in-memory bucket and clock.

    Backoff sleeps go through a token whose ``wait`` advances the fake clock.
    """
    def _make(jitter: float = 0, conditional_put: bool = False, token=None):
        token = token or cancel_token
        rng = random.Random(7)
        real_wait = token.wait

        def fake_wait(timeout):
            clock.advance(timeout)
            return real_wait(0)

        token.wait = fake_wait
        return ObjectStoreLockClient(
            lambda bucket: store,
            retry_jitter_seconds=jitter,
            conditional_put=conditional_put,
            cancel_token=token,
            clock=clock,
            monotonic=clock.monotonic,
            jitter=lambda value: rng.uniform(0, value),
        )

    return _make


@pytest.fixture
def local_tree(tmp_path):
    """A small local directory to synchronize."""
    root = tmp_path / "site"
    (root / "assets").mkdir(parents=True)
    (root / "index.html").write_text("<h1>hello</h1>")
    (root / "assets" / "app.js").write_text("console.log(1);")
    return root


@pytest.fixture
def make_config(local_tree):
    def _make(**overrides):
        values = dict(
            local_path=str(local_tree),
            remote_uri=f"gs://{BUCKET}/site",
            lock_retry_jitter_seconds=0,
            lock_max_wait_seconds=0,
        )
        values.update(overrides)
        return SyncConfig(**values)

    return _make


@pytest.fixture
def transfer():
    return FakeTransfer()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def make_orchestrator(make_config, store, make_lock_client, transfer, notifier, cancel_token):
    """Build an orchestrator wired to the in-memory store and fake transfer."""
    def _make(identity: str = "node-a", **overrides):
        config = make_config(**overrides)
        orchestrator = SyncOrchestrator(
            config=config,
            identity=identity,
            storage=store,
            lock_client=make_lock_client(conditional_put=config.lock_conditional_put),
            detector=ChangeDetector(),
            transfer=transfer,
            notifier=notifier,
            cancel_token=cancel_token,
        )
        # never really sleep between cycles
        orchestrator.cancel_token.wait = lambda timeout: orchestrator.cancel_token.cancelled
        return orchestrator

    return _make


@pytest.fixture
def mock_logger():
    """Provide a mock logger with assertion helpers."""
    logger = MagicMock()

    # Track all log calls
    logger._calls = {
        "debug": [],
        "info": [],
        "warning": [],
        "error": [],
        "critical": [],
    }

    def make_log_method(level):
        def log_method(msg, *args, **kwargs):
            logger._calls[level].append(str(msg))

        return log_method

    for level in logger._calls:
        setattr(logger, level, make_log_method(level))

    def assert_logged(level, substring):
        messages = logger._calls[level]
        assert any(substring in m for m in messages), (
            f"Expected '{substring}' in {level} logs, got: {messages}"
        )

    logger.assert_logged = assert_logged
    return logger
