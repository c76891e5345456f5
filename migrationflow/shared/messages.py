"""Helpers for langchain message content."""

from typing import Any


def content_to_text(content: str | list[Any]) -> str:
    """Flatten message content (plain string or content blocks) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and isinstance(block.get("text"), str):
            parts.append(block["text"])
    return "".join(parts)
