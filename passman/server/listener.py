import logging
import os
import socket
import threading
from pathlib import Path
from typing import Optional

from passman.core.errors import StoreUnavailable

from .dispatcher import Dispatcher
from .handler import ConnectionHandler

logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = 0.5


class Listener:
    """Binds the local socket and hands each connection to its own worker thread."""

    def __init__(self, socket_path: Path, dispatcher: Dispatcher, backlog: int = 16):
        self.socket_path = Path(socket_path)
        self.dispatcher = dispatcher
        self.backlog = backlog
        self._sock: Optional[socket.socket] = None
        self._stopping = threading.Event()
        self._fatal: Optional[BaseException] = None

    def bind(self) -> None:
        # 清理上次异常退出留下的 socket 文件
        self.socket_path.unlink(missing_ok=True)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(str(self.socket_path))
            os.chmod(self.socket_path, 0o600)
            sock.listen(self.backlog)
        except OSError:
            sock.close()
            raise
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        self._sock = sock
        logger.info("Listening on %s", self.socket_path)

    def serve_forever(self) -> None:
        if self._sock is None:
            self.bind()
        try:
            while not self._stopping.is_set():
                try:
                    conn, _ = self._sock.accept()
                except socket.timeout:
                    continue
                except OSError:
                    if self._stopping.is_set():
                        break
                    raise
                logger.debug("Accepted connection")
                worker = threading.Thread(target=self._serve_connection, args=(conn,), daemon=True)
                worker.start()
        finally:
            self._cleanup()

        if self._fatal is not None:
            raise self._fatal

    def _serve_connection(self, conn: socket.socket) -> None:
        try:
            ConnectionHandler(conn, self.dispatcher).handle()
        except StoreUnavailable as e:
            logger.critical("Vault store unavailable, shutting down: %s", e)
            self._fatal = e
            self.shutdown()

    def shutdown(self) -> None:
        self._stopping.set()

    def _cleanup(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        self.socket_path.unlink(missing_ok=True)
        logger.info("Listener stopped")
