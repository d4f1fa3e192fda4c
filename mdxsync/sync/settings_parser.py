"""Parsing of JSON settings files into keyed values."""

import json
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from .error_tracker import ParseError


@dataclass
class ParsedSetting:
    key: str
    value: Any


def setting_key(path: str) -> str:
    """Settings key: the file name without its extension."""
    return PurePosixPath(path).stem


def parse_settings(path: str, raw: str) -> ParsedSetting:
    """
    Parse a settings file. The value's internal shape is not validated.
    """
    try:
        value = json.loads(raw.lstrip("\ufeff"))
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in {path}: {e.msg} (line {e.lineno}, column {e.colno})", source_id=path)
    return ParsedSetting(key=setting_key(path), value=value)
