# -- coding: utf-8 --
"""Result record parsing and normalization into the JSON output document.

A result record is the first line of the controller's result log file: a
comma separated list of `key=value` fields. `program` and `result`/`pass`
are special-cased; every other field is emitted as a JSON number, string or
empty string using the rules in `normalize_value`.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import sys
from decimal import Decimal, InvalidOperation
from typing import Any, TextIO

from core.errors import ResultOutputError

L = logging.getLogger("cvx_trigger.output")

IMAGE_EXTS = (".jpg", ".jpeg", ".png", ".bmp")
PASS_VALUE = "0"

_NUMERIC_RE = re.compile(r"^[0-9]+(\.[0-9]+)?$")
_INTEGER_RE = re.compile(r"^[+-]?[0-9]+$")
_PROGRAM_KEYS = {"program"}
_RESULT_KEYS = {"result", "pass"}


class JsonNumber(str):
    """Canonical decimal text emitted unquoted."""


def parse_result_record(text: str) -> list[tuple[str, str]]:
    """Split the first non-empty line into trimmed (key, value) pairs.

    Empty fields (nothing between two commas, or a bare `=`) are skipped
    rather than emitted as an empty key.
    """
    lines = [ln for ln in text.strip().splitlines() if ln.strip()]
    if not lines:
        return []
    fields = []
    for part in lines[0].split(","):
        key, sep, value = part.strip().partition("=")
        key = key.strip()
        value = value.strip() if sep else ""
        if not key and not value:
            continue
        fields.append((key, value))
    return fields


def normalize_numeric_text(value: str) -> str:
    # Strips '0' from both ends of the raw text, so "100" becomes "1".
    # Kept as-is for compatibility with existing consumers of this output.
    v = value.strip("0")
    if v.startswith("."):
        v = f"0{v}"
    if v.endswith("."):
        v += "0"
    if v in ("", "0.0"):
        v = "0"
    return format(Decimal(v), "f")


def normalize_value(value: str) -> Any:
    """Return "" for blanks, JsonNumber for decimal text, else the string."""
    v = value.strip()
    if not v:
        return ""
    if _NUMERIC_RE.match(v):
        return JsonNumber(normalize_numeric_text(v))
    return v


def parse_result_flag(value: str) -> bool:
    return value == PASS_VALUE


def build_result_fields(
    record: list[tuple[str, str]], default_program: int
) -> dict[str, Any]:
    """Map a parsed record to ordered output fields (without `image`).

    A repeated key keeps its first position and takes its last value.
    """
    out: dict[str, Any] = {}
    for key, value in record:
        lowered = key.lower()
        if lowered in _PROGRAM_KEYS:
            # int() alone would accept "1_0" and non-ASCII digits.
            if not _INTEGER_RE.match(value):
                raise ResultOutputError(f"Invalid program value {value!r}")
            out["program"] = int(value)
        elif lowered in _RESULT_KEYS:
            out["result"] = parse_result_flag(value)
        else:
            out[key] = normalize_value(value)
    out.setdefault("program", int(default_program))
    out.setdefault("result", False)
    return out


def image_search_root(result_path: str, output_dir: str | None = None) -> str:
    root = os.path.splitext(result_path)[0]
    if os.path.isdir(root) or not output_dir:
        return root
    return output_dir


def find_first_image(root: str) -> str | None:
    if not os.path.isdir(root):
        return None
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            if os.path.splitext(name)[1].lower() in IMAGE_EXTS:
                return os.path.join(dirpath, name)
    return None


def encode_image_field(image_path: str | None, inline: bool) -> str | None:
    if image_path is None:
        return None
    if not inline:
        return image_path
    with open(image_path, "rb") as f:
        return base64.b64encode(f.read()).decode("ascii")


def dump_json(fields: dict[str, Any]) -> str:
    """Serialize a flat field map compactly, keeping JsonNumber text exact."""
    parts = []
    for key, value in fields.items():
        if isinstance(value, JsonNumber):
            encoded = str(value)
        else:
            encoded = json.dumps(value, ensure_ascii=False)
        parts.append(f"{json.dumps(key, ensure_ascii=False)}:{encoded}")
    return "{" + ",".join(parts) + "}"


class ResultEncoder:
    """Turn a result log file into the one-line JSON document."""

    def __init__(self, *, program_index: int, inline_image: bool, output_dir: str | None = None):
        self.program_index = int(program_index)
        self.inline_image = bool(inline_image)
        self.output_dir = output_dir

    def encode(self, result_path: str) -> str:
        try:
            with open(result_path, "r", encoding="utf-8", errors="replace") as f:
                text = f.read()
            fields = build_result_fields(
                parse_result_record(text), self.program_index
            )
            image_path = find_first_image(
                image_search_root(result_path, self.output_dir)
            )
            if image_path is None:
                L.warning("No image found for %s", result_path)
            # `image` is reserved and always last; a record field of that name is dropped.
            fields.pop("image", None)
            fields["image"] = encode_image_field(image_path, self.inline_image)
            return dump_json(fields)
        except ResultOutputError:
            raise
        except (OSError, ValueError, InvalidOperation) as e:
            raise ResultOutputError(f"Failed to output the result: {e}") from e

    def emit(self, result_path: str, stream: TextIO | None = None) -> str:
        doc = self.encode(result_path)
        out = stream or sys.stdout
        out.write(doc + "\n")
        out.flush()
        return doc


__all__ = [
    "IMAGE_EXTS",
    "JsonNumber",
    "ResultEncoder",
    "build_result_fields",
    "dump_json",
    "encode_image_field",
    "find_first_image",
    "image_search_root",
    "normalize_numeric_text",
    "normalize_value",
    "parse_result_flag",
    "parse_result_record",
]
