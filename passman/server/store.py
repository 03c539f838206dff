"""Vault Store: the only component that touches the ``passwords`` table.

Every CRUD call opens its own short-lived session, so the store is safe to
share between connection workers. Uniqueness of (service, username) is left
to the database constraint; a losing concurrent ``add`` surfaces as
``IntegrityError`` and is reported as ``DuplicateEntry``. Update and Delete
are single statements keyed by (service, username), so a concurrent Delete
can only make them miss, never fail halfway.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy import Engine, delete as sql_delete, func, update as sql_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from passman.core.crypto import DEFAULT_ITERATIONS, MasterKeyVerifier
from passman.core.errors import (
    DuplicateEntry,
    InvalidMasterPassword,
    MasterPasswordNotSet,
    NotFound,
    StoreUnavailable,
    VaultLocked,
)
from passman.core.models import Entry

from .database import init_db
from .models import VaultEntry, VaultMeta

logger = logging.getLogger(__name__)


def _normalize_expiry(expiry: Optional[datetime]) -> Optional[datetime]:
    # SQLite 不保存时区，统一转换为 UTC 的 naive 时间
    if expiry is not None and expiry.tzinfo is not None:
        return expiry.astimezone(timezone.utc).replace(tzinfo=None)
    return expiry


class _AccessGate:
    """Shared/exclusive gate around the lock flag.

    CRUD calls hold it shared for their whole duration; flipping the lock
    flag holds it exclusively, so ``lock()`` returns only after in-flight
    calls have finished and every later call sees the new state.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._active = 0
        self._writing = False
        self._waiting_writers = 0

    @contextmanager
    def shared(self) -> Iterator[None]:
        with self._cond:
            # 有写者等待时新读者让路，避免 lock() 饿死
            while self._writing or self._waiting_writers:
                self._cond.wait()
            self._active += 1
        try:
            yield
        finally:
            with self._cond:
                self._active -= 1
                if not self._active:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writing or self._active:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class VaultStore:
    def __init__(self, engine: Engine, kdf_iterations: int = DEFAULT_ITERATIONS, lock_on_start: bool = True):
        self.engine = engine
        self.verifier = MasterKeyVerifier(kdf_iterations)
        self.lock_on_start = lock_on_start
        self._ready = False
        self._locked = False
        # 串行化 vault_meta 的读改写（主密码校验可能很慢，不放在 _gate 里）
        self._lock_guard = threading.Lock()
        self._gate = _AccessGate()

    # --- 生命周期 ---

    def initialize(self) -> None:
        try:
            init_db(self.engine)
            with Session(self.engine) as session:
                meta = session.get(VaultMeta, 1)
                if meta is None:
                    session.add(VaultMeta(id=1))
                    session.commit()
                elif meta.validation_token and self.lock_on_start:
                    self._locked = True
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Schema initialization failed: {e}") from e
        self._ready = True
        logger.info("Vault store initialized (locked=%s)", self._locked)

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def is_locked(self) -> bool:
        return self._locked

    def _require_ready(self) -> None:
        if not self._ready:
            raise StoreUnavailable("Vault store used before schema initialization")

    @contextmanager
    def _unlocked(self) -> Iterator[None]:
        self._require_ready()
        with self._gate.shared():
            if self._locked:
                raise VaultLocked()
            yield

    # --- 增删改查 ---

    def add(self, entry: Entry) -> None:
        row = VaultEntry(
            service=entry.service,
            username=entry.username,
            password=entry.password,
            notes=entry.notes,
            expiry=_normalize_expiry(entry.expiry),
        )
        with self._unlocked(), Session(self.engine) as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DuplicateEntry(entry.service, entry.username) from e
        logger.info("Added entry %s/%s", entry.service, entry.username)

    def _find(self, session: Session, service: str, username: str) -> Optional[VaultEntry]:
        statement = select(VaultEntry).where(
            VaultEntry.service == service,
            VaultEntry.username == username,
        )
        return session.exec(statement).first()

    def get(self, service: str, username: str) -> Entry:
        with self._unlocked(), Session(self.engine) as session:
            row = self._find(session, service, username)
            if row is None:
                raise NotFound(service, username)
            return row.to_entry()

    def list(self, query: str = "") -> List[Entry]:
        statement = select(VaultEntry)
        if query:
            # instr 区分大小写，LIKE 在 SQLite 中对 ASCII 不区分
            statement = statement.where(
                (func.instr(VaultEntry.service, query) > 0)
                | (func.instr(VaultEntry.username, query) > 0)
            )
        statement = statement.order_by(VaultEntry.id)
        with self._unlocked(), Session(self.engine) as session:
            return [row.to_entry() for row in session.exec(statement).all()]

    def update(self, service: str, username: str, password: str, notes: str) -> None:
        statement = (
            sql_update(VaultEntry)
            .where(VaultEntry.service == service, VaultEntry.username == username)
            .values(password=password, notes=notes, updated_at=datetime.now())
        )
        with self._unlocked(), self.engine.begin() as conn:
            updated = conn.execute(statement).rowcount
        if not updated:
            raise NotFound(service, username)
        logger.info("Updated entry %s/%s", service, username)

    def delete(self, service: str, username: str) -> bool:
        """Remove an entry. Deleting a missing key is not an error.

        Returns whether a row was actually removed.
        """
        statement = sql_delete(VaultEntry).where(
            VaultEntry.service == service,
            VaultEntry.username == username,
        )
        with self._unlocked(), self.engine.begin() as conn:
            removed = conn.execute(statement).rowcount
        if not removed:
            logger.debug("Delete of missing entry %s/%s ignored", service, username)
            return False
        logger.info("Deleted entry %s/%s", service, username)
        return True

    # --- 主密码锁 ---

    def lock(self, master_password: str) -> None:
        """Lock the vault.

        The first call sets the master password; later calls must repeat it.
        Calls already running finish first; any call that starts after this
        returns raises ``VaultLocked``.
        """
        self._require_ready()
        with self._lock_guard:
            with Session(self.engine) as session:
                meta = session.get(VaultMeta, 1) or VaultMeta(id=1)
                if not meta.validation_token:
                    if not master_password:
                        raise InvalidMasterPassword()
                    meta.kdf_salt = self.verifier.generate_salt()
                    meta.validation_token = self.verifier.create_token(master_password, meta.kdf_salt)
                    session.add(meta)
                    session.commit()
                    logger.info("Master password set")
                elif not self.verifier.verify(master_password, meta.kdf_salt or "", meta.validation_token):
                    raise InvalidMasterPassword()
            with self._gate.exclusive():
                self._locked = True
        logger.info("Vault locked")

    def unlock(self, master_password: str) -> None:
        self._require_ready()
        with self._lock_guard:
            with Session(self.engine) as session:
                meta = session.get(VaultMeta, 1)
            if meta is None or not meta.validation_token:
                raise MasterPasswordNotSet()
            if not self.verifier.verify(master_password, meta.kdf_salt or "", meta.validation_token):
                raise InvalidMasterPassword()
            with self._gate.exclusive():
                self._locked = False
        logger.info("Vault unlocked")
