import json
from typing import Any, Literal

import yaml  # type: ignore[import-untyped]
from pyresults import Err, Ok, Result


def parse_payload(
    raw: str,
    parser: Literal["json", "yaml"] | None = None,
) -> Result[dict[str, Any], str]:
    """CLI から渡された recurrence / metadata 文字列を dict にする。

    parser 未指定なら JSON を試し、駄目なら YAML (``type: rolling`` 形式) を試す。
    """
    match parser:
        case "json":
            return parse_json(raw)
        case "yaml":
            return parse_yaml(raw)
        case None:
            by_json = parse_json(raw)
            if by_json.is_ok():
                return by_json
            by_yaml = parse_yaml(raw)
            if by_yaml.is_ok():
                return by_yaml
            return Err[dict[str, Any], str](f"Invalid payload: {raw!s}")


def parse_json(raw: str) -> Result[dict[str, Any], str]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        return Err[dict[str, Any], str](f"Invalid JSON: {e!s}")
    if not isinstance(value, dict):
        return Err[dict[str, Any], str](f"Not a mapping: {raw!s}")
    return Ok[dict[str, Any], str](value)


def parse_yaml(raw: str) -> Result[dict[str, Any], str]:
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        return Err[dict[str, Any], str](f"Invalid YAML: {e!s}")
    if not isinstance(value, dict):
        return Err[dict[str, Any], str](f"Not a mapping: {raw!s}")
    return Ok[dict[str, Any], str](value)
