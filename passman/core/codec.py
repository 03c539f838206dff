"""Envelope codec for the passman socket protocol.

Every message travels as one length-prefixed JSON frame::

    [4 bytes big-endian length][JSON payload]

The payload is the message's fields plus its ``kind`` discriminant, so the
receiver recovers the concrete variant without being told what to expect.
One frame carries exactly one request or one response.
"""
import json
import struct
from typing import BinaryIO

from pydantic import BaseModel, ValidationError

from .errors import MalformedMessage, NoMessage
from .models import Message, message_adapter

HEADER = struct.Struct(">I")
MAX_MESSAGE_SIZE = 1024 * 1024  # 1 MiB


def encode(message: BaseModel) -> bytes:
    payload = message.model_dump_json().encode("utf-8")
    if len(payload) > MAX_MESSAGE_SIZE:
        raise ValueError(f"Message too large: {len(payload)} bytes")
    return HEADER.pack(len(payload)) + payload


def _parse_payload(payload: bytes) -> Message:
    try:
        return message_adapter.validate_json(payload)
    except ValidationError as e:
        # 区分 JSON 本身损坏和字段校验失败，方便排查
        try:
            json.loads(payload)
        except ValueError:
            raise MalformedMessage("Envelope is not valid JSON") from e
        raise MalformedMessage(f"Invalid envelope: {e.error_count()} validation error(s)") from e


def _check_length(length: int) -> None:
    if length > MAX_MESSAGE_SIZE:
        raise MalformedMessage(f"Declared length {length} exceeds {MAX_MESSAGE_SIZE} bytes")


def decode(data: bytes) -> Message:
    """Decode exactly one complete frame."""
    if not data:
        raise NoMessage("Empty stream")
    if len(data) < HEADER.size:
        raise MalformedMessage("Truncated header")

    (length,) = HEADER.unpack_from(data)
    _check_length(length)
    body = data[HEADER.size:]
    if len(body) < length:
        raise MalformedMessage(f"Truncated body: expected {length} bytes, got {len(body)}")
    if len(body) > length:
        raise MalformedMessage(f"{len(body) - length} trailing bytes after frame")
    return _parse_payload(body)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_message(stream: BinaryIO) -> Message:
    """Read one frame from a binary stream (e.g. ``socket.makefile("rb")``).

    Raises ``NoMessage`` when the peer closed before sending anything and
    ``MalformedMessage`` for every other decoding failure.
    """
    header = _read_exact(stream, HEADER.size)
    if not header:
        raise NoMessage("Peer closed the connection")
    if len(header) < HEADER.size:
        raise MalformedMessage("Truncated header")

    (length,) = HEADER.unpack(header)
    _check_length(length)
    body = _read_exact(stream, length)
    if len(body) < length:
        raise MalformedMessage(f"Truncated body: expected {length} bytes, got {len(body)}")
    return _parse_payload(body)


def write_message(stream: BinaryIO, message: BaseModel) -> None:
    stream.write(encode(message))
    stream.flush()
