"""Labeled section scanner for markdown-ish model output.

Models are asked to answer in named sections (``## Reasoning``,
``* Instructions`` ...). The scanner walks the response line by line, starts
a new section whenever a heading matches, and hands the body lines to a
per-section post-processor.
"""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

HeadingMatcher = Callable[[str], str | None]
PostProcessor = Callable[[list[str]], str]

FENCE = "```"


@dataclass(frozen=True)
class Section:
    label: str
    lines: list[str]


def heading_pattern(words: str) -> re.Pattern[str]:
    """Heading regex: ``#``/``*`` markers then words, or the bare words on their own."""
    return re.compile(rf"^\s*(?:[#*]+\s*{words}\b.*|{words}\s*:?)\s*$", re.IGNORECASE)


def make_heading_matcher(patterns: dict[str, re.Pattern[str]]) -> HeadingMatcher:
    """Matcher returning the label of the first pattern that matches."""

    def match(line: str) -> str | None:
        for label, pattern in patterns.items():
            if pattern.match(line):
                return label
        return None

    return match


def scan_sections(
    content: str,
    match_heading: HeadingMatcher,
    strip_lines: bool = False,
    fenced_labels: Iterable[str] = (),
) -> list[Section]:
    """Split content into labeled sections, in order of appearance.

    Text before the first heading is ignored. A heading followed directly by
    another heading produces no section. Inside a section labeled with one
    of fenced_labels, lines within an open code fence are never headings.
    """
    fenced_labels = frozenset(fenced_labels)
    sections: list[Section] = []
    label: str | None = None
    buffer: list[str] = []
    in_fence = False
    for raw in content.split("\n"):
        line = raw.strip() if strip_lines else raw
        if label in fenced_labels and is_fence_line(line):
            in_fence = not in_fence
        if in_fence:
            buffer.append(line)
            continue
        next_label = match_heading(line)
        if next_label is None:
            buffer.append(line)
            continue
        if label is not None and buffer:
            sections.append(Section(label, buffer))
        label = next_label
        buffer = []
    if label is not None and buffer:
        sections.append(Section(label, buffer))
    return sections


def join_stripped(lines: list[str]) -> str:
    return "\n".join(lines).strip()


def is_fence_line(line: str) -> bool:
    return line.lstrip().startswith(FENCE)


def between_outer_fences(lines: list[str]) -> str:
    """Keep what lies between the first and last fence line.

    Commentary around the code block is dropped; fences in between are
    kept as content. With a single fence everything after it is kept, with
    none the whole section is.
    """
    fences = [i for i, line in enumerate(lines) if is_fence_line(line)]
    if len(fences) >= 2:
        lines = lines[fences[0] + 1: fences[-1]]
    elif len(fences) == 1:
        lines = lines[fences[0] + 1:]
    return join_stripped(lines)


def collect_sections(
    sections: Iterable[Section],
    labels: Iterable[str],
    post_processors: dict[str, PostProcessor] | None = None,
) -> dict[str, str]:
    """Post-process sections into {label: text}; later sections win, missing ones are empty."""
    post_processors = post_processors or {}
    parsed = {label: "" for label in labels}
    for section in sections:
        process = post_processors.get(section.label, join_stripped)
        parsed[section.label] = process(section.lines)
    return parsed
