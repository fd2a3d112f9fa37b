"""Deterministic cache keys for resolved requests.

A request is first reduced to a canonical string::

    METHOD|scheme://host/path|"k1"=v1&"k2"=v2|<md5 of body>

with parameters sorted by key and every key and value JSON-encoded, then
hashed with MD5. Two requests that agree on method, URL, parameter set and
body always produce the same key, whatever order the parameters were
inserted in. Headers are not part of the key. For uploads the body is
replaced by :func:`upload_descriptor`.
"""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from restfall.client.builder import ResolvedRequest, UploadPayload


def md5_hex(text: str | bytes) -> str:
    """Hex MD5 digest of *text* (UTF-8 encoded when a ``str``)."""
    data = text.encode("utf-8") if isinstance(text, str) else text
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def canonical_value(value: Any) -> str:
    """Stable text form of a parameter value.

    Every value, strings included, is rendered as compact JSON with sorted
    keys, so ``"1"`` and ``1`` stay distinct and an ``&`` or ``=`` inside a
    value cannot merge with the next pair.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def body_digest(body: Any) -> str:
    """MD5 of a request body; the empty-string digest when there is none."""
    if body is None:
        return md5_hex(b"")
    if isinstance(body, (bytes, bytearray)):
        return md5_hex(bytes(body))
    return md5_hex(canonical_value(body))


def canonical_form(
    method: str,
    url: str,
    parameters: Optional[Mapping[str, Any]] = None,
    body: Any = None,
) -> str:
    """Build the canonical string a cache key is hashed from."""
    query = "&".join(
        f"{canonical_value(str(key))}={canonical_value(parameters[key])}"
        for key in sorted(parameters or {}, key=str)
    )
    return "|".join([method.upper(), url, query, body_digest(body)])


def make_cache_key(
    method: str,
    url: str,
    parameters: Optional[Mapping[str, Any]] = None,
    body: Any = None,
) -> str:
    """Hash the canonical form of a request into a 32-character hex key."""
    return md5_hex(canonical_form(method, url, parameters, body))


def cache_key_for(request: ResolvedRequest) -> str:
    """Cache key of a :class:`~restfall.client.builder.ResolvedRequest`."""
    body = request.body if request.upload is None else upload_descriptor(request.upload)
    return make_cache_key(request.method, request.url, request.parameters, body)


def upload_descriptor(upload: UploadPayload) -> dict[str, Any]:
    """Identity of an upload payload for key purposes.

    Byte payloads contribute their digest; file objects only their metadata,
    since reading them would consume the stream.
    """
    data = upload.data
    return {
        "field_name": upload.field_name,
        "filename": upload.filename,
        "mime_type": upload.mime_type,
        "data": md5_hex(bytes(data)) if isinstance(data, (bytes, bytearray)) else None,
    }
