from datetime import datetime
from typing import Annotated, List, Literal, Optional, Tuple, Union, get_args

from pydantic import BaseModel, Field, TypeAdapter


class Entry(BaseModel):
    service: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = ""
    notes: str = ""
    expiry: Optional[datetime] = None

    model_config = {"from_attributes": True}


# --- 请求 (Requests) ---
# 每个变体都带有 kind 判别字段，解码时不需要调用方提供类型提示

class AddRequest(BaseModel):
    kind: Literal["add_request"] = "add_request"
    service: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = ""
    notes: str = ""
    expiry: Optional[datetime] = None

    def to_entry(self) -> Entry:
        return Entry(
            service=self.service,
            username=self.username,
            password=self.password,
            notes=self.notes,
            expiry=self.expiry,
        )


class GetRequest(BaseModel):
    kind: Literal["get_request"] = "get_request"
    service: str = Field(min_length=1)
    username: str = Field(min_length=1)


class ListRequest(BaseModel):
    kind: Literal["list_request"] = "list_request"
    query: str = ""


class UpdateRequest(BaseModel):
    kind: Literal["update_request"] = "update_request"
    service: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = ""
    notes: str = ""


class DeleteRequest(BaseModel):
    kind: Literal["delete_request"] = "delete_request"
    service: str = Field(min_length=1)
    username: str = Field(min_length=1)


class LockRequest(BaseModel):
    kind: Literal["lock_request"] = "lock_request"
    password: str


class UnlockRequest(BaseModel):
    kind: Literal["unlock_request"] = "unlock_request"
    password: str


# --- 响应 (Responses) ---

class StatusResponse(BaseModel):
    """Shape shared by every response that can report a failure."""
    success: bool = True
    error: Optional[str] = None


class AddResponse(StatusResponse):
    kind: Literal["add_response"] = "add_response"


class GetResponse(BaseModel):
    kind: Literal["get_response"] = "get_response"
    found: bool = False
    password: str = ""
    notes: str = ""
    expiry: Optional[datetime] = None


class ListResponse(BaseModel):
    kind: Literal["list_response"] = "list_response"
    entries: List[Entry] = Field(default_factory=list)


class UpdateResponse(StatusResponse):
    kind: Literal["update_response"] = "update_response"


class DeleteResponse(StatusResponse):
    kind: Literal["delete_response"] = "delete_response"


class LockResponse(StatusResponse):
    kind: Literal["lock_response"] = "lock_response"


class UnlockResponse(StatusResponse):
    kind: Literal["unlock_response"] = "unlock_response"


REQUEST_TYPES = (
    AddRequest,
    GetRequest,
    ListRequest,
    UpdateRequest,
    DeleteRequest,
    LockRequest,
    UnlockRequest,
)

RESPONSE_TYPES = (
    AddResponse,
    GetResponse,
    ListResponse,
    UpdateResponse,
    DeleteResponse,
    LockResponse,
    UnlockResponse,
)

# 三个联合类型都由上面的元组生成，保证解码范围与分发表一致
Request = Annotated[Union[REQUEST_TYPES], Field(discriminator="kind")]  # type: ignore[valid-type]
Response = Annotated[Union[RESPONSE_TYPES], Field(discriminator="kind")]  # type: ignore[valid-type]
Message = Annotated[Union[REQUEST_TYPES + RESPONSE_TYPES], Field(discriminator="kind")]  # type: ignore[valid-type]

message_adapter: TypeAdapter = TypeAdapter(Message)


def variants(union) -> Tuple[type, ...]:
    """Return the member models of a discriminated ``Annotated[Union[...], ...]``."""
    return get_args(get_args(union)[0])
