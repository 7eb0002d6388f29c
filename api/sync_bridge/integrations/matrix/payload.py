"""Helpers for /sync response bodies.

The bridge treats a sync payload as opaque text. The only structure it
touches is the top-level ``next_batch`` member: it is read to advance the
cursor and, for the event stream, removed while every other member keeps
its exact upstream text.
"""

import json
import re
from json.decoder import scanstring
from typing import List, Tuple

CURSOR_FIELD = "next_batch"

_decoder = json.JSONDecoder()
_WHITESPACE = re.compile(r"[ \t\n\r]*")


def _skip_whitespace(text: str, idx: int) -> int:
    return _WHITESPACE.match(text, idx).end()


def split_members(raw: str) -> List[Tuple[str, str, str]]:
    """Split a JSON object into its top-level members without re-encoding.

    Args:
        raw: JSON text whose top-level value is an object

    Returns:
        List of (decoded name, raw name text, raw value text) in document order

    Raises:
        ValueError: If ``raw`` is not a single well-formed JSON object
    """
    idx = _skip_whitespace(raw, 0)
    if raw[idx : idx + 1] != "{":
        raise ValueError("payload is not a JSON object")

    members: List[Tuple[str, str, str]] = []
    idx = _skip_whitespace(raw, idx + 1)
    if raw[idx : idx + 1] == "}":
        end = idx + 1
    else:
        while True:
            if raw[idx : idx + 1] != '"':
                raise ValueError(f"expected member name at offset {idx}")
            name, name_end = scanstring(raw, idx + 1)
            raw_name = raw[idx:name_end]

            idx = _skip_whitespace(raw, name_end)
            if raw[idx : idx + 1] != ":":
                raise ValueError(f"expected ':' at offset {idx}")
            idx = _skip_whitespace(raw, idx + 1)

            _, value_end = _decoder.raw_decode(raw, idx)
            members.append((name, raw_name, raw[idx:value_end]))

            idx = _skip_whitespace(raw, value_end)
            separator = raw[idx : idx + 1]
            if separator == ",":
                idx = _skip_whitespace(raw, idx + 1)
                continue
            if separator == "}":
                end = idx + 1
                break
            raise ValueError(f"expected ',' or '}}' at offset {idx}")

    if _skip_whitespace(raw, end) != len(raw):
        raise ValueError("trailing data after JSON object")
    return members


def strip_field(raw: str, field: str = CURSOR_FIELD) -> str:
    """Return ``raw`` with every top-level ``field`` member removed.

    Remaining members are joined with ``,`` and otherwise copied verbatim,
    so their values stay byte-identical to the input.
    """
    kept = [
        f"{raw_name}:{raw_value}"
        for name, raw_name, raw_value in split_members(raw)
        if name != field
    ]
    return "{" + ",".join(kept) + "}"
