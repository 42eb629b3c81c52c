"""
Queue message schemas

Messages travel as base64-encoded JSON so any queue transport can carry
them as plain text. Every message has a `kind` tag and is validated on the
way in; anything that does not fit its schema is rejected as a whole.
"""

import base64
import binascii
import json
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedMessage


class TraceContext(BaseModel):
    trace_id: str
    span_id: Optional[str] = None
    parent_span_id: Optional[str] = None


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    process_id: str = Field(alias='processId', min_length=1)
    trace: Optional[TraceContext] = Field(default=None, alias='_trace')


class StartMessage(_Message):
    """Dispatch request for one process (start queue)"""

    kind: Literal['start'] = 'start'


class StationJobMessage(_Message):
    """One station job (image queue)"""

    kind: Literal['station'] = 'station'
    station_number: int = Field(alias='stationNumber', ge=1)
    expected_count: int = Field(alias='expectedCount', ge=1)
    station_id: Optional[str] = Field(default=None, alias='stationId')
    station_name: Optional[str] = Field(default=None, alias='stationName')
    temperature: Optional[float] = None


def encode_message(message):
    """
    Serialize a message model to transport-safe text

    Args:
        message: StartMessage or StationJobMessage

    Returns:
        str: base64 of the JSON document (camelCase keys)
    """
    payload = message.model_dump(by_alias=True, exclude_none=True)
    raw = json.dumps(payload, separators=(',', ':')).encode('utf-8')
    return base64.b64encode(raw).decode('ascii')


def decode_message(text, model):
    """
    Parse transport text back into a validated message

    Args:
        text: Message body (base64 JSON text, or already-decoded JSON/dict)
        model: Expected message class

    Returns:
        An instance of model

    Raises:
        MalformedMessage: If the body cannot be decoded or fails validation
    """
    if isinstance(text, dict):
        payload = text
    else:
        try:
            if isinstance(text, bytes):
                text = text.decode('utf-8')
            stripped = text.strip()
            if not stripped.startswith('{'):
                stripped = base64.b64decode(stripped, validate=True).decode('utf-8')
            payload = json.loads(stripped)
        except (binascii.Error, UnicodeDecodeError, ValueError, AttributeError) as e:
            raise MalformedMessage(f"Undecodable {model.__name__}: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedMessage(f"{model.__name__} must be a JSON object")

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise MalformedMessage(f"Invalid {model.__name__}: {e.error_count()} error(s): {e}") from e
