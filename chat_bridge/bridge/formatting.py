"""Text helpers for rendering partial answers into Telegram messages."""

from __future__ import annotations

from typing import List, Optional


CODE_FENCE = "```"


def ensure_formatting(text: str, limit: Optional[int] = None) -> str:
    """Close a dangling ``` fence so a half-streamed code block still parses as Markdown.

    With ``limit`` set, text that would grow past it is returned unchanged.
    """

    if text.count(CODE_FENCE) % 2 == 0:
        return text
    closed = text + "\n" + CODE_FENCE
    if limit is not None and len(closed) > limit:
        return text
    return closed


def split_message(text: str, limit: int) -> List[str]:
    """Split text into pages of at most ``limit`` characters.

    Pages are cut at the last newline in the second half of the window when
    there is one, otherwise hard. Joining the pages gives back ``text``.
    """

    if limit < 1:
        raise ValueError("limit must be positive")
    if len(text) <= limit:
        return [text]
    pages: List[str] = []
    rest = text
    while len(rest) > limit:
        cut = rest.rfind("\n", limit // 2, limit)
        cut = cut + 1 if cut != -1 else limit
        pages.append(rest[:cut])
        rest = rest[cut:]
    if rest:
        pages.append(rest)
    return pages
