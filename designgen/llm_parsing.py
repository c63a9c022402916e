from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional, Sequence

from designgen.errors import UnparsableResponse
from designgen.repair_rules import REPAIR_PIPELINE, apply_repairs, strip_code_fences
from designgen.truncation import is_truncated

log = logging.getLogger(__name__)

# Top-level keys of the design document. Section-wise reconstruction depends on
# this list; keep it in sync with the prompt's output schema.
SECTION_NAMES: Sequence[str] = ("metadata", "product", "design", "branding", "photography")

_KEY_VALUE_LINE_RE = re.compile(r'^\s*"([^"]+)"\s*:\s*(.*\S)\s*$')
_DECODER = json.JSONDecoder()


def _try_load(text: str) -> Optional[Any]:
    """Strict decode; None on failure. Valid JSON ``null`` is not a result here."""
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def _ends_with_open_string(value: str) -> bool:
    if not value.startswith('"'):
        return False
    body = value[1:]
    in_esc = False
    for ch in body:
        if in_esc:
            in_esc = False
        elif ch == "\\":
            in_esc = True
        elif ch == '"':
            return False
    return True


def _close_dangling_string(text: str) -> str:
    body = text.rstrip()
    if body.endswith("\\") and not body.endswith("\\\\"):
        body = body[:-1]
    return body + '"'


def _salvage_lines(text: str) -> Dict[str, Any]:
    """Collect every decodable ``"key": value`` line into one flat mapping."""
    result: Dict[str, Any] = {}
    for line in text.splitlines():
        m = _KEY_VALUE_LINE_RE.match(line)
        if not m:
            continue
        key, raw_value = m.group(1), m.group(2)
        if raw_value.endswith(","):
            raw_value = raw_value[:-1].rstrip()
        if not raw_value:
            continue
        try:
            result[key] = json.loads(raw_value)
            continue
        except (ValueError, RecursionError):
            pass
        if _ends_with_open_string(raw_value):
            try:
                result[key] = json.loads(_close_dangling_string(raw_value))
                continue
            except (ValueError, RecursionError):
                pass
        log.warning("json_recovery: skipping unsalvageable key=%s", key)
    return result


def _recover_truncated(text: str) -> Any:
    closed = apply_repairs(_close_dangling_string(text))
    doc = _try_load(closed)
    if doc is not None:
        log.info("json_recovery: closed dangling string in truncated response")
        return doc
    log.warning("json_recovery: truncated response still invalid; salvaging line by line")
    # Salvage before balancing so closers are not glued onto the last value.
    return _salvage_lines(apply_repairs(text, REPAIR_PIPELINE[:-1]))


def _decode_leading_value(segment: str) -> Optional[Any]:
    try:
        value, _ = _DECODER.raw_decode(segment)
        return value
    except (ValueError, RecursionError):
        return None


def _depths_at(text: str, positions: Sequence[int]) -> Dict[int, int]:
    """Bracket depth (outside strings) at each position; -1 if inside a string."""
    wanted = set(positions)
    out: Dict[int, int] = {}
    depth = 0
    in_str = False
    esc = False
    for idx, ch in enumerate(text):
        if idx in wanted:
            out[idx] = -1 if in_str else depth
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
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth = max(0, depth - 1)
    return out


def _reconstruct_sections(text: str, sections: Sequence[str]) -> Dict[str, Any]:
    """Decode each known top-level section independently and reassemble them.

    When a section name also appears as a nested key, the shallowest
    occurrence wins, ties going to the earliest.
    """
    if not sections:
        return {}
    boundary = re.compile(r'"(%s)"\s*:' % "|".join(re.escape(s) for s in sections))
    matches = list(boundary.finditer(text))
    depths = _depths_at(text, [m.start() for m in matches])
    # Matches inside string literals report depth -1 and are never boundaries.
    candidates = [m for m in matches if depths[m.start()] >= 0]
    chosen: Dict[str, "re.Match[str]"] = {}
    for m in sorted(candidates, key=lambda m: (depths[m.start()], m.start())):
        chosen.setdefault(m.group(1), m)
    ordered = sorted(chosen.values(), key=lambda m: m.start())
    result: Dict[str, Any] = {}
    for pos, m in enumerate(ordered):
        end = ordered[pos + 1].start() if pos + 1 < len(ordered) else len(text)
        name = m.group(1)
        segment = text[m.end() : end].strip()
        if not segment:
            continue
        value = _decode_leading_value(segment)
        if value is None:
            value = _decode_leading_value(apply_repairs(segment.rstrip(",")))
        if value is None:
            log.warning("json_recovery: could not parse section=%s", name)
            continue
        result[name] = value
    return result


def parse_model_json(raw_text: Optional[str], sections: Sequence[str] = SECTION_NAMES) -> Any:
    """Turn model output into structured data or raise UnparsableResponse.

    Strategy, least to most aggressive:
    - Strip code fences and decode directly.
    - Run the repair pipeline (quotes, commas, stray fields, brackets) and decode.
    - If the text looks cut off mid-string: close the string, rebalance and
      decode; else salvage decodable ``"key": value`` lines.
    - Decode each known top-level section on its own and reassemble.
    """
    if not raw_text or not raw_text.strip():
        raise UnparsableResponse("Failed to generate valid content from the model.")

    stripped = strip_code_fences(raw_text)
    doc = _try_load(stripped)
    if doc is not None:
        return doc
    log.warning("json_recovery: direct decode failed; applying repairs (len=%d)", len(stripped))

    repaired = apply_repairs(stripped)
    doc = _try_load(repaired)
    if doc is not None:
        log.info("json_recovery: repaired response decoded")
        return doc

    if is_truncated(stripped):
        log.warning("json_recovery: response looks truncated")
        salvaged = _recover_truncated(stripped)
        if salvaged:
            return salvaged

    log.warning("json_recovery: falling back to section-wise reconstruction")
    assembled = _reconstruct_sections(repaired, sections)
    if assembled:
        log.info("json_recovery: reconstructed sections=%s", sorted(assembled))
        return assembled

    log.error("json_recovery: all strategies failed")
    raise UnparsableResponse("Unable to parse AI response as valid JSON.")
