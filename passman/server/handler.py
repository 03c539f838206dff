import logging
import socket
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from passman.core.codec import read_message, write_message
from passman.core.errors import NoMessage, ProtocolError, StoreUnavailable, UnsupportedRequest, VaultError

from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    AWAITING_REQUEST = "awaiting_request"
    DISPATCHING = "dispatching"
    WRITING_RESPONSE = "writing_response"
    CLOSED = "closed"


class ConnectionHandler:
    """Serves exactly one request/response exchange on an accepted connection."""

    def __init__(self, conn: socket.socket, dispatcher: Dispatcher):
        self.conn = conn
        self.dispatcher = dispatcher
        self.state = ConnectionState.AWAITING_REQUEST
        self.response: Optional[BaseModel] = None

    def handle(self) -> Optional[BaseModel]:
        """Run the exchange and close the connection.

        Returns the response that was written, or None when the connection
        ended without one. Only ``StoreUnavailable`` escapes.
        """
        try:
            self._run()
        finally:
            self._close()
        return self.response

    def _run(self) -> None:
        with self.conn.makefile("rb") as rfile:
            try:
                request = read_message(rfile)
            except NoMessage:
                logger.debug("Peer closed before sending a request")
                return
            except ProtocolError as e:
                logger.warning("Protocol error: %s", e)
                return

        self.state = ConnectionState.DISPATCHING
        try:
            response = self.dispatcher.dispatch(request)
        except StoreUnavailable:
            raise
        except UnsupportedRequest as e:
            logger.warning("%s", e)
            return
        except VaultError as e:
            logger.warning("%s failed, closing without response: %s", type(request).__name__, e)
            return
        except Exception:
            logger.exception("Handler for %s failed, closing without response", type(request).__name__)
            return

        self.state = ConnectionState.WRITING_RESPONSE
        try:
            with self.conn.makefile("wb") as wfile:
                write_message(wfile, response)
        except OSError as e:
            logger.warning("Failed to write %s: %s", type(response).__name__, e)
            return
        self.response = response

    def _close(self) -> None:
        self.state = ConnectionState.CLOSED
        try:
            self.conn.close()
        except OSError:
            logger.debug("Error closing connection", exc_info=True)
