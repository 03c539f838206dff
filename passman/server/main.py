import logging
import signal
import sys

from passman.core.errors import StoreUnavailable

from .config import Settings, get_settings
from .database import create_vault_engine
from .dispatcher import Dispatcher
from .listener import Listener
from .store import VaultStore

logger = logging.getLogger("passman.server")


def build_listener(settings: Settings) -> Listener:
    """Open the store and bind the socket. Any failure here is fatal."""
    settings.ensure_home()
    engine = create_vault_engine(settings.db_path, echo=settings.db_echo)
    store = VaultStore(
        engine,
        kdf_iterations=settings.kdf_iterations,
        lock_on_start=settings.lock_on_start,
    )
    store.initialize()
    listener = Listener(settings.socket_path, Dispatcher(store))
    listener.bind()
    return listener


def main() -> int:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        listener = build_listener(settings)
    except (StoreUnavailable, OSError) as e:
        logger.critical("Startup failed: %s", e)
        return 1

    def _stop(signum, frame):
        logger.info("Received signal %s, stopping", signum)
        listener.shutdown()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    try:
        listener.serve_forever()
    except StoreUnavailable:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
