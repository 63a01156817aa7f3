"""Local repair strategies for malformed or truncated JSON model output."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Tuple

from utils.exceptions import CompletionParseError


_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_DANGLING_TAIL_RES = (
    re.compile(r',\s*"[^"]*"\s*:\s*$'),
    re.compile(r',\s*"[^"]*$'),
    re.compile(r",\s*\{[^{}\[\]]*$"),
    re.compile(r",\s*\[[^\[\]{}]*$"),
    re.compile(r",\s*[^,\]}]*$"),
)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_PAIRS = {"}": "{", "]": "["}


def extract_json_text(content: str) -> str:
    """Strip a markdown fence, else slice from the first `{` to the last `}`."""
    trimmed = content.strip()
    if trimmed.startswith("```"):
        return _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", trimmed, count=1)).strip()

    first = trimmed.find("{")
    last = trimmed.rfind("}")
    if first != -1 and last > first:
        return trimmed[first : last + 1].strip()
    return trimmed


def normalize_json_candidate(content: str) -> str:
    text = content.replace("\r\n", "\n")
    text = re.sub(r"[“”]", '"', text)
    text = re.sub(r"[‘’]", "'", text)
    text = text.lstrip("\ufeff")
    text = _CONTROL_CHARS_RE.sub("", text)
    return text.replace("\t", " ").strip()


def escape_raw_newlines_inside_strings(content: str) -> str:
    text = normalize_json_candidate(content)
    out: List[str] = []
    in_string = False
    escaped = False
    index = 0
    while index < len(text):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
                out.append(ch)
            elif ch == "\\":
                escaped = True
                out.append(ch)
            elif ch == '"':
                in_string = False
                out.append(ch)
            elif ch == "\n":
                out.append("\\n")
            elif ch == "\r":
                if index + 1 < len(text) and text[index + 1] == "\n":
                    index += 1
                out.append("\\n")
            else:
                out.append(ch)
        else:
            if ch == '"':
                in_string = True
            out.append(ch)
        index += 1
    return "".join(out)


def strip_dangling_json_tail(content: str) -> str:
    """Drop a half-written trailing member (`, "key":`, `, "partial`, ...)."""
    current = normalize_json_candidate(content)
    for _ in range(6):
        following = current
        for pattern in _DANGLING_TAIL_RES:
            following = pattern.sub("", following)
        following = following.rstrip()
        if following == current:
            break
        current = following
    return current


def strip_trailing_commas(content: str) -> str:
    current = content
    for _ in range(5):
        following = _TRAILING_COMMA_RE.sub(r"\1", current)
        if following == current:
            break
        current = following
    return current


def remove_unmatched_closers(content: str) -> str:
    text = normalize_json_candidate(content)
    out: List[str] = []
    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]":
            if not stack or stack[-1] != _PAIRS[ch]:
                continue
            stack.pop()
        out.append(ch)
    return "".join(out)


def _scan_structure(text: str, start: int, stop_when_balanced: bool = False) -> Tuple[List[str], bool, int]:
    """Walk containers outside strings; returns (open stack, inside string, index where depth returned to 0)."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]" and stack and stack[-1] == _PAIRS[ch]:
            stack.pop()
            if stop_when_balanced and not stack:
                return stack, in_string, index
    return stack, in_string, -1


def balanced_json_slice(content: str) -> Optional[str]:
    """First complete top-level object, or None."""
    text = normalize_json_candidate(content)
    start = text.find("{")
    if start == -1:
        return None
    _, _, end = _scan_structure(text, start, stop_when_balanced=True)
    if end == -1:
        return None
    return text[start : end + 1].strip()


def repair_truncated_json(content: str) -> Optional[str]:
    """Close an open string and every open container of a cut-off object."""
    text = normalize_json_candidate(content)
    start = text.find("{")
    if start == -1:
        return None
    text = text[start:]

    stack, in_string, _ = _scan_structure(text, 0)
    if in_string:
        text = text.rstrip("\\") + '"'
    closers = {"{": "}", "[": "]"}
    return text + "".join(closers[opener] for opener in reversed(stack))


def _candidates(content: str) -> List[str]:
    normalized_raw = normalize_json_candidate(content)
    normalized_extracted = normalize_json_candidate(extract_json_text(content))
    escaped_raw = escape_raw_newlines_inside_strings(normalized_raw)
    escaped_extracted = escape_raw_newlines_inside_strings(normalized_extracted)
    dangling_raw = strip_dangling_json_tail(escaped_raw)
    dangling_extracted = strip_dangling_json_tail(escaped_extracted)
    unmatched_raw = remove_unmatched_closers(normalized_raw)
    unmatched_extracted = remove_unmatched_closers(normalized_extracted)
    unmatched_escaped_raw = remove_unmatched_closers(escaped_raw)
    unmatched_escaped_extracted = remove_unmatched_closers(escaped_extracted)

    base = [
        normalized_raw,
        normalized_extracted,
        escaped_raw,
        escaped_extracted,
        dangling_raw,
        dangling_extracted,
        unmatched_raw,
        unmatched_extracted,
        unmatched_escaped_raw,
        unmatched_escaped_extracted,
    ]
    ordered = base + [strip_trailing_commas(item) for item in base]

    balanced_sources = (
        unmatched_escaped_raw or unmatched_raw or content,
        unmatched_escaped_extracted or unmatched_extracted or extract_json_text(content),
    )
    for source in balanced_sources:
        balanced = balanced_json_slice(source)
        if not balanced:
            continue
        normalized = normalize_json_candidate(balanced)
        unmatched = remove_unmatched_closers(normalized)
        ordered.extend([normalized, strip_trailing_commas(normalized), unmatched, strip_trailing_commas(unmatched)])

    seen = set()
    unique: List[str] = []
    for item in ordered:
        if item and item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def _loads_object(candidate: str) -> Dict[str, Any]:
    parsed = json.loads(candidate)
    if not isinstance(parsed, dict):
        raise ValueError("JSON root is not an object")
    return parsed


def parse_json_content(content: str) -> Dict[str, Any]:
    """
    Parse model output into a JSON object.

    Every repair candidate is tried in order; if none parses, each one is
    pushed through the full repair chain (escape, unmatched closers,
    trailing commas, dangling tail, truncation closing) and tried again.

    Raises:
        CompletionParseError: "Invalid JSON output: <last error>".
    """
    candidates = _candidates(str(content or ""))
    last_error = "Invalid JSON output"

    for candidate in candidates:
        try:
            return _loads_object(candidate)
        except ValueError as exc:
            last_error = str(exc)

    for candidate in candidates:
        repaired = repair_truncated_json(
            strip_dangling_json_tail(
                strip_trailing_commas(remove_unmatched_closers(escape_raw_newlines_inside_strings(candidate)))
            )
        )
        if not repaired:
            continue
        try:
            return _loads_object(repaired)
        except ValueError as exc:
            last_error = str(exc)

    raise CompletionParseError(f"Invalid JSON output: {last_error}")
