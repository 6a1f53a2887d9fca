"""Tests for ai/tools/envelope.py."""

from __future__ import annotations

from datetime import datetime, timezone

from canvasmind.ai.tools import ENVELOPE_KEY, ToolResultContentType, ToolResultEnvelope, content_type_for


def test_content_type_for() -> None:
    assert content_type_for("x") is ToolResultContentType.TEXT
    assert content_type_for([1]) is ToolResultContentType.LIST
    assert content_type_for({"a": 1}) is ToolResultContentType.OBJECT
    assert content_type_for(b"x") is ToolResultContentType.BINARY
    assert content_type_for(1.5) is ToolResultContentType.UNKNOWN


def test_create_defaults_blank_payload_path() -> None:
    envelope = ToolResultEnvelope.create("list_components", payload_path="  ")
    assert envelope.payload_path == "result"
    assert envelope.compat_keys == ["result", "list", "items"]


def test_to_dict_uses_wire_keys() -> None:
    created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    envelope = ToolResultEnvelope(tool="add_slider", tool_call_id="c1", created_utc=created, tags=["canvas"])
    data = envelope.to_dict()
    assert data["toolCallId"] == "c1"
    assert data["contentType"] == 0
    assert data["payloadPath"] == "result"
    assert data["createdUtc"] == "2024-05-01T12:00:00+00:00"
    assert ToolResultEnvelope.from_dict(data) == envelope


def test_try_get_ignores_missing_or_malformed() -> None:
    assert ToolResultEnvelope.try_get(None) is None
    assert ToolResultEnvelope.try_get({"result": 1}) is None
    assert ToolResultEnvelope.try_get({ENVELOPE_KEY: "nope"}) is None
    assert ToolResultEnvelope.try_get({ENVELOPE_KEY: {"contentType": 99}}) is None


def test_ensure_attaches_once() -> None:
    root: dict = {"items": [1, 2]}
    first = ToolResultEnvelope.ensure(root, "list_components", ToolResultContentType.LIST, "items")
    second = ToolResultEnvelope.ensure(root, "other")
    assert first.tool == second.tool == "list_components"
    assert second.payload_path == "items"


def test_get_payload_prefers_envelope_path() -> None:
    envelope = ToolResultEnvelope.create("t", payload_path="data")
    root = ToolResultEnvelope.wrap({"x": 1}, envelope, payload_key="data")
    root["result"] = "shadowed"
    assert ToolResultEnvelope.get_payload(root) == {"x": 1}


def test_get_payload_falls_back_to_compat_keys_and_root() -> None:
    assert ToolResultEnvelope.get_payload({"list": [1]}) == [1]
    assert ToolResultEnvelope.get_payload({"other": 1}) == {"other": 1}
    assert ToolResultEnvelope.get_payload(None) is None
