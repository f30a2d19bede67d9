"""Error payload normalization for the NFS-e gateway.

The gateway (and the proxies in front of it) report failures in many incompatible
shapes: nested `error` objects, flat strings, arrays of `{Codigo, Descricao}`
entries at different depths, bare strings and HTML/plain-text bodies. Everything
here is total: any input, including `None`, lists and deeply nested objects,
yields either a `NormalizedError` or `None`, never an exception.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

RAW_TEXT_LIMIT = 1000

MESSAGE_FIELDS = ("mensagem_sefaz", "mensagem", "message", "erro")
CODE_FIELDS = ("errorCode", "codigo_erro", "codigo", "code")
NESTED_ERROR_MESSAGE_FIELDS = ("error", "message", "mensagem")
ENTRY_CODE_FIELDS = ("Codigo", "codigo", "code")
ENTRY_DESCRIPTION_FIELDS = ("Descricao", "descricao", "mensagem", "message")
ERROR_LIST_PATHS: tuple[tuple[str, ...], ...] = (
    ("erros",),
    ("data", "erros"),
    ("metadata", "response", "data", "erros"),
)


@dataclass(frozen=True, slots=True)
class NormalizedError:
    message: str
    code: str = ""

    def __str__(self) -> str:
        return self.message


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError, RecursionError):
        return ""


def _first_text(data: Mapping[str, Any], fields: Sequence[str]) -> str:
    for field in fields:
        value = _as_text(data.get(field))
        if value:
            return value
    return ""


def _with_code(code: str, message: str) -> str:
    return f"[{code}] {message}" if code else message


def _dig(data: Any, path: Sequence[str]) -> Any:
    for key in path:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def _error_object_with_code(payload: Mapping[str, Any]) -> NormalizedError | None:
    error = payload.get("error")
    if not isinstance(error, Mapping):
        return None
    code = _as_text(error.get("errorCode"))
    message = _first_text(error, NESTED_ERROR_MESSAGE_FIELDS)
    if not code or not message:
        return None
    return NormalizedError(_with_code(code, message), code)


def _error_object_message(payload: Mapping[str, Any]) -> NormalizedError | None:
    error = payload.get("error")
    if not isinstance(error, Mapping) or not error:
        return None
    message = _first_text(error, NESTED_ERROR_MESSAGE_FIELDS) or _as_text(error)
    if not message:
        return None
    return NormalizedError(message, _first_text(error, CODE_FIELDS))


def _error_string(payload: Mapping[str, Any]) -> NormalizedError | None:
    error = payload.get("error")
    if not isinstance(error, str) or not error.strip():
        return None
    return NormalizedError(error.strip())


def _top_level_code(payload: Mapping[str, Any]) -> NormalizedError | None:
    code = _first_text(payload, CODE_FIELDS)
    message = _first_text(payload, MESSAGE_FIELDS)
    if not code or not message:
        return None
    return NormalizedError(_with_code(code, message), code)


def _top_level_message(payload: Mapping[str, Any]) -> NormalizedError | None:
    message = _first_text(payload, MESSAGE_FIELDS)
    if not message:
        return None
    return NormalizedError(message)


def _format_entry(entry: Any) -> tuple[str, str]:
    if isinstance(entry, Mapping):
        code = _first_text(entry, ENTRY_CODE_FIELDS)
        description = _first_text(entry, ENTRY_DESCRIPTION_FIELDS)
        if not description and not code:
            description = _as_text(entry)
        return code, _with_code(code, description)
    return "", _as_text(entry)


def _entries(entries: Any) -> NormalizedError | None:
    if not isinstance(entries, (list, tuple)) or not entries:
        return None

    lines: list[str] = []
    first_code = ""
    for entry in entries:
        code, line = _format_entry(entry)
        if not line:
            continue
        if code and not first_code:
            first_code = code
        lines.append(line)

    if not lines:
        return None
    return NormalizedError("\n".join(lines), first_code)


def _error_lists(payload: Mapping[str, Any]) -> NormalizedError | None:
    for path in ERROR_LIST_PATHS:
        found = _entries(_dig(payload, path))
        if found is not None:
            return found
    return None


_MAPPING_STRATEGIES: tuple[Callable[[Mapping[str, Any]], NormalizedError | None], ...] = (
    _error_object_with_code,
    _error_object_message,
    _error_string,
    _top_level_code,
    _top_level_message,
    _error_lists,
)


def extract_error(payload: Any) -> NormalizedError | None:
    """Return the error carried by a parsed payload, or None when there is none.

    Strategies are tried in priority order and the first match wins.
    """

    if isinstance(payload, str):
        text = payload.strip()
        return NormalizedError(text) if text else None

    if isinstance(payload, (list, tuple)):
        return _entries(payload)

    if not isinstance(payload, Mapping):
        return None

    for strategy in _MAPPING_STRATEGIES:
        found = strategy(payload)
        if found is not None:
            return found
    return None


def truncate_raw_text(raw_text: str | bytes | None, limit: int = RAW_TEXT_LIMIT) -> str:
    if raw_text is None:
        return ""
    if isinstance(raw_text, bytes):
        raw_text = raw_text.decode("utf-8", errors="replace")
    return raw_text.strip()[:limit]


def normalize_error(payload: Any, *, raw_text: str | bytes | None = None) -> NormalizedError | None:
    """`extract_error` plus the last-resort fallback: a bounded prefix of the raw body."""

    found = extract_error(payload)
    if found is not None:
        return found

    text = truncate_raw_text(raw_text)
    if text:
        return NormalizedError(text)
    return None


def error_message(payload: Any, *, raw_text: str | bytes | None = None) -> str | None:
    found = normalize_error(payload, raw_text=raw_text)
    return found.message if found is not None else None


def parse_json_body(text: str | bytes | None) -> Any | None:
    """Parse a response body read as text first. Returns None when it is not JSON."""

    if text is None:
        return None
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    text = text.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None
