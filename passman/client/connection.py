import socket
from datetime import datetime
from pathlib import Path
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

from passman.core.codec import read_message, write_message
from passman.core.errors import DaemonUnavailable, NoMessage, ProtocolError
from passman.core.models import (
    AddRequest,
    AddResponse,
    DeleteRequest,
    DeleteResponse,
    GetRequest,
    GetResponse,
    ListRequest,
    ListResponse,
    LockRequest,
    LockResponse,
    UnlockRequest,
    UnlockResponse,
    UpdateRequest,
    UpdateResponse,
)

T = TypeVar("T", bound=BaseModel)


class VaultClient:
    """Talks to passmand. Every call opens a fresh connection."""

    def __init__(self, socket_path: Path, timeout: Optional[float] = 10.0):
        self.socket_path = Path(socket_path)
        self.timeout = timeout

    def _connect(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(str(self.socket_path))
        except OSError as e:
            sock.close()
            raise DaemonUnavailable(f"Cannot reach passmand at {self.socket_path}: {e}") from e
        return sock

    def request(self, request: BaseModel, expected: Type[T]) -> T:
        with self._connect() as sock:
            try:
                with sock.makefile("wb") as wfile:
                    write_message(wfile, request)
                with sock.makefile("rb") as rfile:
                    response = read_message(rfile)
            except NoMessage as e:
                raise ProtocolError("passmand closed the connection without a response") from e
            except OSError as e:
                # 超时、对端重置或管道断开
                raise ProtocolError(f"Exchange with passmand failed: {e}") from e

        if not isinstance(response, expected):
            raise ProtocolError(f"Expected {expected.__name__}, got {type(response).__name__}")
        return response

    def add(self, service: str, username: str, password: str, notes: str = "",
            expiry: Optional[datetime] = None) -> AddResponse:
        request = AddRequest(service=service, username=username, password=password, notes=notes, expiry=expiry)
        return self.request(request, AddResponse)

    def get(self, service: str, username: str) -> GetResponse:
        return self.request(GetRequest(service=service, username=username), GetResponse)

    def list(self, query: str = "") -> ListResponse:
        return self.request(ListRequest(query=query), ListResponse)

    def update(self, service: str, username: str, password: str, notes: str = "") -> UpdateResponse:
        request = UpdateRequest(service=service, username=username, password=password, notes=notes)
        return self.request(request, UpdateResponse)

    def delete(self, service: str, username: str) -> DeleteResponse:
        return self.request(DeleteRequest(service=service, username=username), DeleteResponse)

    def lock(self, master_password: str) -> LockResponse:
        return self.request(LockRequest(password=master_password), LockResponse)

    def unlock(self, master_password: str) -> UnlockResponse:
        return self.request(UnlockRequest(password=master_password), UnlockResponse)
