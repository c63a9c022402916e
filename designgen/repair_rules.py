from __future__ import annotations

import re
from typing import Callable, Iterable, List, Tuple

RepairRule = Callable[[str], str]

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
# Complete double-quoted JSON string literal (escapes honoured).
_STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"')
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_OBJ_GAP_RE = re.compile(r"}(\s*){")
_ARR_GAP_RE = re.compile(r"](\s*)\[")
_EXTRA_FIELD_NAMES = ("prefix", "suffix")
_EXTRA_FIELD_LAST_RE = re.compile(
    r',\s*"(?:%s)"\s*:\s*"[^"]*"(?=\s*[}\]])' % "|".join(_EXTRA_FIELD_NAMES)
)
_EXTRA_FIELD_RE = re.compile(r'"(?:%s)"\s*:\s*"[^"]*"\s*,?\s*' % "|".join(_EXTRA_FIELD_NAMES))
_COMPLEX_SCALAR_CHARS = frozenset(":,{}\n")
_CLOSERS = {"{": "}", "[": "]"}


def _split_strings(text: str) -> List[Tuple[bool, str]]:
    """Split text into (is_string_literal, chunk) pieces in order."""
    parts: List[Tuple[bool, str]] = []
    pos = 0
    for m in _STRING_RE.finditer(text):
        if m.start() > pos:
            parts.append((False, text[pos : m.start()]))
        parts.append((True, m.group(0)))
        pos = m.end()
    if pos < len(text):
        parts.append((False, text[pos:]))
    return parts


def _sub_outside_strings(pattern: "re.Pattern[str]", repl: str, text: str) -> str:
    return "".join(chunk if is_str else pattern.sub(repl, chunk) for is_str, chunk in _split_strings(text))


def strip_code_fences(text: str) -> str:
    """Remove markdown ``` / ```json fence markers and surrounding whitespace."""
    return _FENCE_RE.sub("", text or "").strip()


def normalize_single_quotes(text: str) -> str:
    """Rewrite 'key': and simple 'scalar' spans to double quotes.

    Spans inside double-quoted strings are left alone, as are spans whose
    content looks structural (contains ':', ',', '{' or '}').
    """
    if "'" not in text:
        return text
    out: List[str] = []
    in_str = False
    esc = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_str:
            out.append(ch)
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            i += 1
            continue
        if ch == '"':
            in_str = True
            out.append(ch)
            i += 1
            continue
        if ch == "'":
            end = text.find("'", i + 1)
            if end != -1:
                content = text[i + 1 : end]
                if not (_COMPLEX_SCALAR_CHARS & set(content)):
                    out.append('"' + content.replace('"', '\\"') + '"')
                    i = end + 1
                    continue
        out.append(ch)
        i += 1
    return "".join(out)


def remove_trailing_commas(text: str) -> str:
    return _sub_outside_strings(_TRAILING_COMMA_RE, r"\1", text)


def insert_missing_commas(text: str) -> str:
    text = _sub_outside_strings(_OBJ_GAP_RE, r"},\1{", text)
    return _sub_outside_strings(_ARR_GAP_RE, r"],\1[", text)


def strip_extraneous_fields(text: str) -> str:
    """Drop stray "prefix"/"suffix" string members models like to inject."""
    text = _EXTRA_FIELD_LAST_RE.sub("", text)
    return _EXTRA_FIELD_RE.sub("", text)


def _open_stack(text: str) -> List[str]:
    stack: List[str] = []
    in_str = False
    esc = False
    for ch in text:
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("}", "]"):
            if stack and _CLOSERS[stack[-1]] == ch:
                stack.pop()
    return stack


def balance_brackets(text: str) -> str:
    """Append the closers needed for every '{' / '[' still open at the end."""
    stack = _open_stack(text)
    if not stack:
        return text
    body = text.rstrip()
    if body.endswith(","):
        body = body[:-1].rstrip()
    return body + "".join(_CLOSERS[ch] for ch in reversed(stack))


REPAIR_PIPELINE: Tuple[RepairRule, ...] = (
    strip_code_fences,
    normalize_single_quotes,
    remove_trailing_commas,
    insert_missing_commas,
    strip_extraneous_fields,
    balance_brackets,
)


def apply_repairs(text: str, rules: Iterable[RepairRule] = REPAIR_PIPELINE) -> str:
    for rule in rules:
        text = rule(text)
    return text
