from __future__ import annotations

_STRUCTURAL_CLOSERS = ("}", "]")


def _is_escaped(text: str, idx: int) -> bool:
    slashes = 0
    idx -= 1
    while idx >= 0 and text[idx] == "\\":
        slashes += 1
        idx -= 1
    return slashes % 2 == 1


def is_truncated(text: str) -> bool:
    """Guess whether model output was cut off inside a string literal.

    Walks backwards from the end counting unescaped double quotes until the
    first '}' or ']'. An odd count means a string was opened and never
    closed. This is a heuristic; callers must tolerate wrong answers.
    """
    if not text:
        return False
    quotes = 0
    for idx in range(len(text) - 1, -1, -1):
        ch = text[idx]
        if ch in _STRUCTURAL_CLOSERS:
            break
        if ch == '"' and not _is_escaped(text, idx):
            quotes += 1
    return quotes % 2 == 1
