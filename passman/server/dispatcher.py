import logging
from typing import Callable, Dict, Tuple, Type

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from passman.core.errors import NotFound, StoreUnavailable, UnsupportedRequest, VaultError
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
    Request,
    StatusResponse,
    UnlockRequest,
    UnlockResponse,
    UpdateRequest,
    UpdateResponse,
    variants,
)

from .store import VaultStore

logger = logging.getLogger(__name__)

Handler = Callable[[BaseModel], BaseModel]


class Dispatcher:
    """Routes one decoded request to the matching Vault Store operation.

    Holds nothing but the store reference and the request -> handler table.
    """

    def __init__(self, store: VaultStore):
        self.store = store
        self._routes: Dict[Type[BaseModel], Tuple[Type[BaseModel], Handler]] = {
            AddRequest: (AddResponse, self._add),
            GetRequest: (GetResponse, self._get),
            ListRequest: (ListResponse, self._list),
            UpdateRequest: (UpdateResponse, self._update),
            DeleteRequest: (DeleteResponse, self._delete),
            LockRequest: (LockResponse, self._lock),
            UnlockRequest: (UnlockResponse, self._unlock),
        }
        missing = [t.__name__ for t in variants(Request) if t not in self._routes]
        if missing:
            raise RuntimeError(f"No handler registered for: {', '.join(missing)}")

    def dispatch(self, request: BaseModel) -> BaseModel:
        route = self._routes.get(type(request))
        if route is None:
            raise UnsupportedRequest(type(request))
        response_type, handler = route

        try:
            return handler(request)
        except StoreUnavailable:
            raise
        except (VaultError, SQLAlchemyError) as e:
            # 只有带 success/error 字段的响应才能把失败带回给客户端
            if issubclass(response_type, StatusResponse):
                logger.info("%s failed: %s", type(request).__name__, e)
                return response_type(success=False, error=str(e))
            raise

    # --- handlers ---

    def _add(self, request: AddRequest) -> AddResponse:
        self.store.add(request.to_entry())
        return AddResponse()

    def _get(self, request: GetRequest) -> GetResponse:
        try:
            entry = self.store.get(request.service, request.username)
        except NotFound:
            return GetResponse(found=False)
        return GetResponse(found=True, password=entry.password, notes=entry.notes, expiry=entry.expiry)

    def _list(self, request: ListRequest) -> ListResponse:
        return ListResponse(entries=self.store.list(request.query))

    def _update(self, request: UpdateRequest) -> UpdateResponse:
        self.store.update(request.service, request.username, request.password, request.notes)
        return UpdateResponse()

    def _delete(self, request: DeleteRequest) -> DeleteResponse:
        self.store.delete(request.service, request.username)
        return DeleteResponse()

    def _lock(self, request: LockRequest) -> LockResponse:
        self.store.lock(request.password)
        return LockResponse()

    def _unlock(self, request: UnlockRequest) -> UnlockResponse:
        self.store.unlock(request.password)
        return UnlockResponse()
