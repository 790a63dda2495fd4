"""
Tests for agents/tools/firebase_tool.py — stream folding and URL building.

No network: the REST calls themselves are not exercised here.
"""

import json

import pytest

from agents.tools.firebase_tool import (
    STORAGE_API,
    FirebaseBlobStore,
    FirebaseStore,
    apply_stream_event,
)
from agents.tools.store_errors import StoreAuthError


def _event(path, data):
    return json.dumps({"path": path, "data": data})


class TestApplyStreamEvent:

    def test_root_put_replaces_cache(self):
        cache, changed = apply_stream_event({"old": 1}, "put", _event("/", {"a": {"b": 1}}))
        assert changed is True
        assert cache == {"a": {"b": 1}}

    def test_root_put_of_null_empties_cache(self):
        cache, changed = apply_stream_event({"a": 1}, "put", _event("/", None))
        assert changed is True
        assert cache is None

    def test_child_put_sets_nested_value(self):
        cache, _ = apply_stream_event({"a": 1}, "put", _event("/b/c", 2))
        assert cache == {"a": 1, "b": {"c": 2}}

    def test_child_put_of_null_deletes(self):
        cache, _ = apply_stream_event({"a": 1, "b": {"c": 2}}, "put", _event("/b/c", None))
        assert cache == {"a": 1}

    def test_patch_merges_each_key(self):
        cache, _ = apply_stream_event(
            {"tokens": {"p1": {"x": 1, "y": 1, "visible": True}}},
            "patch",
            _event("/tokens", {"p1/x": 50, "n1": {"x": 0, "y": 0, "visible": True}}),
        )
        assert cache == {
            "tokens": {
                "p1": {"x": 50, "y": 1, "visible": True},
                "n1": {"x": 0, "y": 0, "visible": True},
            }
        }

    def test_patch_with_null_deletes(self):
        cache, _ = apply_stream_event({"a": {"x": 1}, "b": 2}, "patch", _event("/", {"a": None}))
        assert cache == {"b": 2}

    def test_keep_alive_changes_nothing(self):
        cache, changed = apply_stream_event({"a": 1}, "keep-alive", "null")
        assert changed is False
        assert cache == {"a": 1}

    @pytest.mark.parametrize("event", ["cancel", "auth_revoked"])
    def test_closed_stream_raises(self, event):
        with pytest.raises(StoreAuthError):
            apply_stream_event(None, event, "null")


class TestUrls:

    def test_database_url(self):
        store = FirebaseStore(database_url="https://table-rtdb.firebaseio.com/", auth_token="t")
        assert store._url("DND/maps/m1") == "https://table-rtdb.firebaseio.com/DND/maps/m1.json"
        assert store._params() == {"auth": "t"}

    def test_no_auth_param_without_token(self, monkeypatch):
        monkeypatch.delenv("FIREBASE_AUTH_TOKEN", raising=False)
        store = FirebaseStore(database_url="https://x.firebaseio.com")
        assert store._params() == {}

    def test_download_url_quotes_path(self):
        blobs = FirebaseBlobStore(bucket="table.appspot.com")
        url = blobs.download_url("DND/maps/1-cave map.png", "tok")
        assert url == f"{STORAGE_API}/table.appspot.com/o/DND%2Fmaps%2F1-cave%20map.png?alt=media&token=tok"

    def test_download_url_without_token(self):
        blobs = FirebaseBlobStore(bucket="b")
        assert blobs.download_url("DND/a", "") == f"{STORAGE_API}/b/o/DND%2Fa?alt=media"

    def test_auth_header(self):
        blobs = FirebaseBlobStore(bucket="b", auth_token="secret")
        assert blobs._headers("image/png") == {
            "Authorization": "Firebase secret",
            "Content-Type": "image/png",
        }
