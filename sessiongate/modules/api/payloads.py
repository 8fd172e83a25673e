"""
Outbound payload builders.

Turn validated send requests into the payload dicts handed to
Transport.send(). Media given as a data: URI is decoded inline; any other
reference is passed through as {"url": ...} for the transport to resolve.
"""

import base64
import binascii
from typing import Any, Dict, Optional, Tuple, Union

from .models import SendFileRequest, SendImageRequest, SendTextRequest

DATA_URI_PREFIX = "data:"


def parse_data_uri(value: str) -> Tuple[Optional[str], bytes]:
    """
    Decode a base64 data: URI.

    Returns:
        (mimetype or None, raw bytes)

    Raises:
        ValueError: If the URI is malformed or not base64 encoded
    """
    if not value.startswith(DATA_URI_PREFIX) or "," not in value:
        raise ValueError("Malformed data URI")

    header, _, data = value[len(DATA_URI_PREFIX):].partition(",")
    params = header.split(";")
    if "base64" not in params[1:]:
        raise ValueError("Only base64 data URIs are supported")

    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Invalid base64 payload in data URI")
    return params[0] or None, raw


def media_reference(value: str) -> Tuple[Optional[str], Union[bytes, Dict[str, str]]]:
    """Inline bytes for data: URIs, otherwise a URL reference."""
    if value.startswith(DATA_URI_PREFIX):
        return parse_data_uri(value)
    return None, {"url": value}


def text_payload(request: SendTextRequest) -> Dict[str, Any]:
    return {"text": request.message}


def image_payload(request: SendImageRequest) -> Dict[str, Any]:
    mimetype, media = media_reference(request.image)
    payload: Dict[str, Any] = {"image": media}
    if request.caption:
        payload["caption"] = request.caption
    if mimetype:
        payload["mimetype"] = mimetype
    return payload


def file_payload(request: SendFileRequest) -> Dict[str, Any]:
    inline_mimetype, media = media_reference(request.file)
    payload: Dict[str, Any] = {"document": media}
    mimetype = request.mimetype or inline_mimetype
    if mimetype:
        payload["mimetype"] = mimetype
    if request.filename:
        payload["file_name"] = request.filename
    return payload
