"""
config_string.py - Parser for the cookie / local-storage text fields.

Format:
    key=value;key2="quoted;value";key3=%22encoded%22

Usage:
    cookies = parse('session=abc; consent="yes;all"')
"""

from __future__ import annotations

from urllib.parse import quote, unquote

READING_KEY = "key"
READING_VALUE = "value"


def _unquote(value: str) -> str:
    if len(value) > 1 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def _value_can_end(value: str) -> bool:
    # A quoted value only ends once its closing quote has been read.
    return not value.startswith('"') or value.endswith('"')


def parse(text: str | None) -> dict[str, str]:
    """
    Parses a semicolon separated ``key=value`` list into a dict.

    Values may be wrapped in double quotes, in which case a ``;`` inside the
    quotes is part of the value. Keys and values are percent-decoded after
    the quotes are stripped. Malformed input never raises: whatever could be
    read is returned.
    """
    result: dict[str, str] = {}
    state = READING_KEY
    key = ""
    value = ""

    for char in text or "":
        if state == READING_KEY:
            if char == "=":
                key = key.strip()
                state = READING_VALUE
            else:
                key += char
            continue

        if char == " " and not value:
            continue
        if char == ";" and _value_can_end(value):
            result[unquote(key)] = unquote(_unquote(value.strip()))
            key = ""
            value = ""
            state = READING_KEY
            continue
        value += char

    if state == READING_VALUE and key and value:
        result[unquote(key)] = unquote(_unquote(value.strip()))
    return result


def serialize(values: dict[str, str]) -> str:
    """Canonical ``k=v;k2=v2`` form of a mapping; ``parse`` reads it back unchanged."""
    pairs = [f"{quote(str(k), safe='')}={quote(str(v), safe='')}" for k, v in values.items()]
    text = ";".join(pairs)
    if values and list(values.values())[-1] == "":
        # an empty trailing value is only kept when terminated
        text += ";"
    return text
