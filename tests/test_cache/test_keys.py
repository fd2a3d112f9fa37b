"""Tests for cache key generation."""

from __future__ import annotations

import hashlib

from restfall.cache.keys import (
    body_digest,
    cache_key_for,
    canonical_form,
    canonical_value,
    make_cache_key,
    md5_hex,
)
from restfall.client.builder import RequestSpec, UploadPayload, resolve
from restfall.models import ClientConfiguration

URL = "https://api.example.com/v1/users"
EMPTY_MD5 = "d41d8cd98f00b204e9800998ecf8427e"


def _config(**kwargs) -> ClientConfiguration:
    return ClientConfiguration(host="https://api.example.com", api_path="/v1", languages=["en"], **kwargs)


# ---------------------------------------------------------------------------
# Canonical form
# ---------------------------------------------------------------------------


class TestCanonicalForm:
    def test_layout(self) -> None:
        form = canonical_form("get", URL, {"b": 2, "a": "x"})
        assert form == f'GET|{URL}|"a"="x"&"b"=2|{EMPTY_MD5}'

    def test_no_parameters(self) -> None:
        assert canonical_form("GET", URL) == f"GET|{URL}||{EMPTY_MD5}"

    def test_body_digest_included(self) -> None:
        form = canonical_form("POST", URL, {}, b"payload")
        assert form.endswith(hashlib.md5(b"payload").hexdigest())

    def test_nested_values_are_sorted_json(self) -> None:
        assert canonical_value({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
        assert canonical_value("plain") == '"plain"'
        assert canonical_value(True) == "true"

    def test_body_digest_of_structured_body(self) -> None:
        assert body_digest({"b": 1, "a": 2}) == body_digest({"a": 2, "b": 1})
        assert body_digest(None) == EMPTY_MD5


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


class TestMakeCacheKey:
    def test_is_md5_of_canonical_form(self) -> None:
        key = make_cache_key("GET", URL, {"page": 2})
        assert key == md5_hex(canonical_form("GET", URL, {"page": 2}))
        assert len(key) == 32

    def test_parameter_order_does_not_matter(self) -> None:
        first = make_cache_key("GET", URL, {"a": 1, "b": 2, "c": 3})
        second = make_cache_key("GET", URL, {"c": 3, "a": 1, "b": 2})
        assert first == second

    def test_method_changes_key(self) -> None:
        assert make_cache_key("GET", URL) != make_cache_key("DELETE", URL)

    def test_url_changes_key(self) -> None:
        assert make_cache_key("GET", URL) != make_cache_key("GET", URL + "/42")

    def test_parameter_value_changes_key(self) -> None:
        assert make_cache_key("GET", URL, {"page": 1}) != make_cache_key("GET", URL, {"page": 2})

    def test_body_changes_key(self) -> None:
        assert make_cache_key("POST", URL, body=b"a") != make_cache_key("POST", URL, body=b"b")

    def test_method_case_is_normalised(self) -> None:
        assert make_cache_key("get", URL) == make_cache_key("GET", URL)

    def test_value_type_changes_key(self) -> None:
        assert make_cache_key("GET", URL, {"a": "1"}) != make_cache_key("GET", URL, {"a": 1})
        assert make_cache_key("GET", URL, {"a": True}) != make_cache_key("GET", URL, {"a": "true"})

    def test_separators_inside_values_cannot_merge_pairs(self) -> None:
        smuggled = make_cache_key("GET", URL, {"a": "1&b=2"})
        assert smuggled != make_cache_key("GET", URL, {"a": "1", "b": "2"})
        assert make_cache_key("GET", URL, {"a=b": "c"}) != make_cache_key("GET", URL, {"a": "b=c"})


class TestCacheKeyForRequest:
    def test_headers_are_ignored(self) -> None:
        config = _config()
        plain = resolve(RequestSpec("GET", "users", {"q": "x"}), config)
        with_header = resolve(RequestSpec("GET", "users", {"q": "x"}, headers={"X-Trace": "1"}), config)
        assert cache_key_for(plain) == cache_key_for(with_header)
        assert plain == with_header
        assert hash(plain) == hash(with_header)

    def test_authorization_does_not_change_key(self) -> None:
        anonymous = resolve(RequestSpec("GET", "users"), _config())
        signed = resolve(RequestSpec("GET", "users"), _config(authorization_header="Bearer t"))
        assert anonymous.cache_key == signed.cache_key

    def test_global_parameters_take_part(self) -> None:
        plain = resolve(RequestSpec("GET", "users"), _config())
        scoped = resolve(RequestSpec("GET", "users"), _config(global_parameters={"tenant": "a"}))
        assert plain.cache_key != scoped.cache_key

    def test_matches_make_cache_key(self) -> None:
        request = resolve(RequestSpec("GET", "users", {"page": 3}), _config())
        assert request.cache_key == make_cache_key("GET", URL, {"page": 3})

    def test_upload_bytes_take_part(self) -> None:
        config = _config()
        first = resolve(RequestSpec("POST", "files", upload=UploadPayload(b"AAAA", "f.bin")), config)
        second = resolve(RequestSpec("POST", "files", upload=UploadPayload(b"BBBB", "f.bin")), config)
        again = resolve(RequestSpec("POST", "files", upload=UploadPayload(b"AAAA", "f.bin")), config)
        assert first.cache_key != second.cache_key
        assert first.cache_key == again.cache_key

    def test_upload_filename_takes_part(self) -> None:
        config = _config()
        first = resolve(RequestSpec("POST", "files", upload=UploadPayload(b"AAAA", "a.bin")), config)
        second = resolve(RequestSpec("POST", "files", upload=UploadPayload(b"AAAA", "b.bin")), config)
        assert first.cache_key != second.cache_key
