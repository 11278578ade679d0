"""Text helpers for rendering agent output on chat platforms."""

import re

_CODE_FENCE = re.compile(r"```[^\n]*\n?(.*?)```", re.DOTALL)
_INLINE_CODE = re.compile(r"`([^`]+)`")
_IMAGE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")
_LINK = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_BOLD = re.compile(r"(\*\*|__)(.+?)\1", re.DOTALL)
_ITALIC = re.compile(r"(?<![\w*])([*_])(?!\s)(.+?)(?<!\s)\1(?![\w*])")
_STRIKE = re.compile(r"~~(.+?)~~")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+", re.MULTILINE)
_QUOTE = re.compile(r"^\s{0,3}>\s?", re.MULTILINE)
_BULLET = re.compile(r"^(\s*)[*+-]\s+", re.MULTILINE)


def strip_markdown(text: str) -> str:
    """Convert markdown to readable plain text.

    Emphasis markers, headings and quotes are removed; links become
    "label (url)"; list bullets become "- ".

    Args:
        text: Markdown text

    Returns:
        Plain text without markdown syntax
    """
    text = _CODE_FENCE.sub(lambda m: m.group(1).rstrip("\n"), text)
    text = _INLINE_CODE.sub(r"\1", text)
    text = _IMAGE.sub(r"\1 (\2)", text)
    text = _LINK.sub(r"\1 (\2)", text)
    text = _BOLD.sub(r"\2", text)
    text = _STRIKE.sub(r"\1", text)
    text = _ITALIC.sub(r"\2", text)
    text = _HEADING.sub("", text)
    text = _QUOTE.sub("", text)
    text = _BULLET.sub(r"\1- ", text)
    return text


def chunk_text(text: str, max_length: int | None) -> list[str]:
    """Split text into pieces no longer than max_length.

    Splits on the last newline inside the window when there is one, then
    on the last space, and hard-cuts otherwise.

    Args:
        text: Text to split
        max_length: Platform message limit (None = unlimited)

    Returns:
        Non-empty chunks in order
    """
    if not text:
        return []
    if max_length is None or len(text) <= max_length:
        return [text]

    chunks = []
    remaining = text
    while len(remaining) > max_length:
        window = remaining[:max_length]
        cut = window.rfind("\n")
        if cut <= 0:
            cut = window.rfind(" ")
        if cut <= 0:
            cut = max_length

        chunk = remaining[:cut].rstrip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining[cut:].lstrip("\n ")

    if remaining:
        chunks.append(remaining)
    return chunks
