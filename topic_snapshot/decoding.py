"""
Key and value decoding.

Keys are decoded while draining so compaction can group on them:

    string  - UTF-8 text
    json    - UTF-8 text holding a JSON document (kept as text so it stays
              hashable, parsed again on export)
    long    - 8-byte big-endian signed integer

Values stay as raw bytes until export, where they are either written as
text (raw message mode) or decoded as MessagePack / JSON.
"""

import json
import struct

import msgpack


def decode_string_key(key_bytes):
    if key_bytes is None:
        return None
    return key_bytes.decode("utf-8")


def decode_json_key(key_bytes):
    """Validate the key as JSON but keep its text form."""
    if key_bytes is None:
        return None
    text = key_bytes.decode("utf-8")
    json.loads(text)
    return text


def decode_long_key(key_bytes):
    if key_bytes is None:
        return None
    if len(key_bytes) != 8:
        raise ValueError(f"Long key must be 8 bytes, got {len(key_bytes)}")
    return struct.unpack(">q", key_bytes)[0]


KEY_DECODERS = {
    "string": decode_string_key,
    "json": decode_json_key,
    "long": decode_long_key,
}


def get_key_decoder(key_type):
    try:
        return KEY_DECODERS[key_type]
    except KeyError:
        raise ValueError(f"Topic key type {key_type} not supported") from None


def render_key(key, key_type):
    """Convert a decoded key into its exported form."""
    if key is None:
        return None
    if key_type == "json":
        return json.loads(key)
    return key


def decode_message(msg_value, format_type="auto"):
    """
    Decode message value based on detected format.

    Args:
        msg_value: Raw message bytes
        format_type: "msgpack", "json", or "auto" (try both)

    Returns: Decoded object, or {"raw_value": text} when neither format applies
    """
    if msg_value is None:
        return None

    if format_type in ("msgpack", "auto"):
        try:
            return msgpack.unpackb(msg_value, raw=False)
        except Exception:
            pass

    try:
        return json.loads(msg_value.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return {"raw_value": msg_value.decode("utf-8", errors="replace")}


def render_value(value, raw_message, value_format="json"):
    """Convert a raw message payload into its exported form."""
    if value is None:
        return None
    if raw_message:
        return value.decode("utf-8", errors="replace")
    return decode_message(value, value_format)


def flatten_dict(d, parent_key='', sep='_'):
    """
    Flatten nested dictionary structure.

    Example:
        {'data': {'bid': 100, 'ask': 101}} -> {'data_bid': 100, 'data_ask': 101}

    Lists are stored as JSON strings.
    """
    items = []
    for k, v in d.items():
        new_key = f"{parent_key}{sep}{k}" if parent_key else str(k)

        if isinstance(v, dict):
            items.extend(flatten_dict(v, new_key, sep).items())
        elif isinstance(v, list):
            items.append((new_key, json.dumps(v) if v else None))
        else:
            items.append((new_key, v))

    return dict(items)
