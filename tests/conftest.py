"""Shared fixtures: a file-backed vault, its dispatcher and a live daemon."""

import shutil
import socket
import tempfile
import threading
from pathlib import Path

import pytest

from passman.client.connection import VaultClient
from passman.server.database import create_vault_engine
from passman.server.dispatcher import Dispatcher
from passman.server.listener import Listener
from passman.server.store import VaultStore

# 测试里不需要 60 万次迭代
FAST_KDF_ITERATIONS = 1000


@pytest.fixture
def engine(tmp_path):
    engine = create_vault_engine(tmp_path / "vault.db")
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    store = VaultStore(engine, kdf_iterations=FAST_KDF_ITERATIONS)
    store.initialize()
    return store


@pytest.fixture
def dispatcher(store):
    return Dispatcher(store)


@pytest.fixture
def socket_dir():
    # AF_UNIX 路径有长度限制，tmp_path 可能过长
    path = Path(tempfile.mkdtemp(prefix="pm-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


class RunningDaemon:
    def __init__(self, listener: Listener):
        self.listener = listener
        self.error = None
        self.thread = threading.Thread(target=self._run, daemon=True)

    def _run(self):
        try:
            self.listener.serve_forever()
        except BaseException as e:
            self.error = e

    @property
    def socket_path(self) -> Path:
        return self.listener.socket_path

    def client(self) -> VaultClient:
        return VaultClient(self.socket_path, timeout=5.0)

    def stop(self):
        self.listener.shutdown()
        self.thread.join(timeout=5)


def start_daemon(socket_path: Path, dispatcher: Dispatcher) -> RunningDaemon:
    listener = Listener(socket_path, dispatcher)
    listener.bind()
    daemon = RunningDaemon(listener)
    daemon.thread.start()
    return daemon


@pytest.fixture
def daemon(socket_dir, dispatcher):
    running = start_daemon(socket_dir / "passmand.sock", dispatcher)
    yield running
    running.stop()


@pytest.fixture
def silent_socket(socket_dir):
    """A socket that queues connections but never answers them."""
    path = socket_dir / "silent.sock"
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    server.bind(str(path))
    server.listen(4)
    yield path
    server.close()
