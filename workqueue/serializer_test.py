"""Tests for JSONSerializer."""

import pytest

from workqueue.serializer import JSONSerializer


class TestJSONSerializer:

    def test_round_trip_preserves_document(self):
        serializer = JSONSerializer()
        message = {
            "type": "graphProperty",
            "graphVertexId": "v1",
            "properties": [{"key": "", "name": "title"}],
            "priority": 3,
            "score": 0.5,
            "visible": True,
            "missing": None,
            "label": "café",
        }

        assert serializer.deserialize(serializer.serialize(message)) == message

    def test_key_order_survives(self):
        serializer = JSONSerializer()
        message = {"z": 1, "a": 2, "m": 3}

        result = serializer.deserialize(serializer.serialize(message))

        assert list(result) == ["z", "a", "m"]

    def test_serialize_produces_utf8_bytes(self):
        body = JSONSerializer().serialize({"label": "café"})

        assert isinstance(body, bytes)
        assert "café".encode("utf-8") in body

    def test_deserialize_accepts_text(self):
        assert JSONSerializer().deserialize('{"type": "ping"}') == {"type": "ping"}

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"\xff\xfe", b""])
    def test_malformed_bodies_raise_value_error(self, body):
        with pytest.raises(ValueError):
            JSONSerializer().deserialize(body)

    def test_serialize_rejects_non_mapping(self):
        with pytest.raises(TypeError):
            JSONSerializer().serialize(["not", "a", "document"])

    def test_serialize_rejects_unserializable_values(self):
        with pytest.raises(TypeError):
            JSONSerializer().serialize({"value": object()})

    @pytest.mark.parametrize("message", [
        {1: "a"},
        {"nested": {None: "a"}},
        {"point": (1, 2)},
        {"items": [{"ok": True}, {2: "b"}]},
    ])
    def test_serialize_rejects_values_that_would_not_round_trip(self, message):
        with pytest.raises(TypeError):
            JSONSerializer().serialize(message)
