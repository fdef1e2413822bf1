"""Math delimiter normalization for model-produced markdown."""

from __future__ import annotations

import re
from typing import Tuple

# Display pairs first so `\[` is never read as text around an inline pair.
_DELIMITER_PAIRS: Tuple[Tuple[str, str, str], ...] = (
    (r"\[", r"\]", "$$"),
    (r"\(", r"\)", "$"),
)


def normalize_latex_delimiters(text: str) -> str:
    """Rewrites backslash math delimiters into the dollar style of solutions.

    `\\( ... \\)` becomes `$ ... $` and `\\[ ... \\]` becomes `$$ ... $$`.
    Nested pairs are matched by depth; an opener without a closer is left as
    is. Middle dots are spelled as `\\cdotp` so they render inside math.
    """
    if not text:
        return ""

    normalized = str(text).replace("·", r" \cdotp ")
    for opener, closer, dollars in _DELIMITER_PAIRS:
        normalized = _rewrite_pairs(normalized, opener, closer, dollars)
    return normalized


def _rewrite_pairs(text: str, opener: str, closer: str, dollars: str) -> str:
    pieces: list[str] = []
    cursor = 0
    while True:
        start = text.find(opener, cursor)
        if start < 0:
            break
        body_start = start + len(opener)
        end = _closing_index(text, body_start, opener, closer)
        if end < 0:
            break
        pieces.append(text[cursor:start])
        pieces.append(dollars + text[body_start:end] + dollars)
        cursor = end + len(closer)
    pieces.append(text[cursor:])
    return "".join(pieces)


def _closing_index(text: str, position: int, opener: str, closer: str) -> int:
    token = re.compile("{}|{}".format(re.escape(opener), re.escape(closer)))
    depth = 0
    for match in token.finditer(text, position):
        if match.group() == opener:
            depth += 1
        elif depth == 0:
            return match.start()
        else:
            depth -= 1
    return -1


def strip_code_fence(text: str) -> str:
    """Removes a surrounding markdown code fence, if present."""
    stripped = str(text or "").strip()
    if not stripped.startswith("```"):
        return stripped
    first_newline = stripped.find("\n")
    if first_newline < 0:
        return stripped.strip("`").strip()
    body = stripped[first_newline + 1 :]
    if body.rstrip().endswith("```"):
        body = body.rstrip()[:-3]
    return body.strip()
