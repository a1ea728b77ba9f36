"""JSON message serializer."""

import json
from typing import Any, Dict, Union

Message = Dict[str, Any]


def _check_round_trip(value: Any, path: str = "message") -> None:
    # json.dumps would coerce these silently: keys to str, tuples to lists
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"{path} has non-str key {key!r}")
            _check_round_trip(item, f"{path}.{key}")
    elif isinstance(value, tuple):
        raise TypeError(f"{path} is a tuple; use a list")
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _check_round_trip(item, f"{path}[{index}]")


class JSONSerializer:
    """Serializes message documents to UTF-8 JSON bytes and back.

    Messages are JSON objects with str keys. Key order survives the round
    trip. Values that JSON would coerce (non-str keys, tuples) are rejected.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def serialize(self, message: Message) -> bytes:
        """Encode a message document.

        Raises:
            TypeError: If the message is not a dict, has non-str keys or
                tuples, or holds values JSON cannot represent.
        """
        if not isinstance(message, dict):
            raise TypeError(
                f"message must be a dict, got {type(message).__name__}"
            )
        _check_round_trip(message)
        return json.dumps(message, ensure_ascii=False).encode(self.encoding)

    def deserialize(self, data: Union[bytes, str]) -> Message:
        """Decode a delivery body into a message document.

        Both transports hand over bytes (the AMQP channel consumes with
        auto_decode=False); str is accepted too.

        Raises:
            ValueError: If the body is not valid JSON or not a JSON object.
        """
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode(self.encoding)
        message = json.loads(data)
        if not isinstance(message, dict):
            raise ValueError(
                f"expected a JSON object, got {type(message).__name__}"
            )
        return message

    def dumps(self, message: Message) -> str:
        """Text form of a message, used for logging."""
        return json.dumps(message, ensure_ascii=False, default=str)


__all__ = ["JSONSerializer", "Message"]
