"""Open/close token scanning for ``${...}`` and ``#{...}`` markers."""

from __future__ import annotations

from collections.abc import Callable


def parse_tokens(text: str, open_token: str, close_token: str, handler: Callable[[str], str]) -> str:
    """Replace every ``open...close`` span in *text* with ``handler(content)``.

    A backslash before the open token escapes it (the backslash is dropped and
    the marker is kept literally). A backslash before a close token inside a
    marker keeps that close token as content. An unterminated marker is kept
    as literal text.
    """
    if not text:
        return ""
    start = text.find(open_token)
    if start == -1:
        return text

    out: list[str] = []
    offset = 0
    while start > -1:
        if start > 0 and text[start - 1] == "\\":
            out.append(text[offset : start - 1])
            out.append(open_token)
            offset = start + len(open_token)
        else:
            out.append(text[offset:start])
            offset = start + len(open_token)
            content: list[str] = []
            end = text.find(close_token, offset)
            while end > -1:
                if end > offset and text[end - 1] == "\\":
                    content.append(text[offset : end - 1])
                    content.append(close_token)
                    offset = end + len(close_token)
                    end = text.find(close_token, offset)
                else:
                    content.append(text[offset:end])
                    break
            if end == -1:
                out.append(text[start:])
                offset = len(text)
            else:
                out.append(handler("".join(content)))
                offset = end + len(close_token)
        start = text.find(open_token, offset)
    if offset < len(text):
        out.append(text[offset:])
    return "".join(out)


def has_token(text: str, open_token: str = "${", close_token: str = "}") -> bool:
    """True when *text* contains at least one unescaped, terminated marker."""
    found = False

    def _mark(content: str) -> str:
        nonlocal found
        found = True
        return ""

    parse_tokens(text, open_token, close_token, _mark)
    return found
