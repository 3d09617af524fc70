"""Splits text into overlapping, size-bounded chunks.

Chunks are exact substrings of the input. Chunk i+1 starts exactly `overlap`
characters before chunk i ends, so the text is fully covered:

    chunks[0] + "".join(c[overlap:] for c in chunks[1:]) == text
"""

import re

from pydantic import BaseModel

from shared.models.errors import ConfigurationError

_SENTENCE_END = re.compile(r"[.!?。！？]+[\"'”’)\]]*\s+")
_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")


class TextSection(BaseModel):
    """A run of document text under one heading."""

    block_type: str
    heading_context: str
    text: str


class TextChunker:
    def __init__(self, max_size: int, overlap: int) -> None:
        """
        Args:
            max_size (int): Maximum characters per chunk, > 0.
            overlap (int): Characters shared between consecutive chunks, 0 <= overlap < max_size.

        Raises:
            ConfigurationError: If the sizes are out of range. Values are never clamped.
        """
        if max_size <= 0:
            raise ConfigurationError(f"max_size must be greater than 0, got {max_size}.", field="max_chunk_size")
        if overlap < 0 or overlap >= max_size:
            raise ConfigurationError(
                f"overlap must be >= 0 and smaller than max_size ({max_size}), got {overlap}.",
                field="overlap",
            )
        self.max_size = max_size
        self.overlap = overlap

    ##########################################
    ################ SPLIT ###################
    ##########################################

    def split(self, text: str) -> list[str]:
        """Split text into contiguous overlapping windows.

        Args:
            text (str): The text to split.

        Returns:
            list[str]: Ordered chunks, empty for empty or whitespace-only text.
        """
        if not text or not text.strip():
            return []
        length = len(text)
        if length <= self.max_size:
            return [text]

        chunks: list[str] = []
        start = 0
        while True:
            end = start + self.max_size
            if end >= length:
                chunks.append(text[start:])
                break
            end = self._find_break(text, start, end)
            chunks.append(text[start:end])
            start = end - self.overlap
        return chunks

    def _find_break(self, text: str, start: int, end: int) -> int:
        """Pick the cut position inside the window [start, end).

        Only the tail of the window is searched: the cut must lie beyond
        start + overlap so the next chunk starts after this one.
        """
        low = max(start + self.overlap + 1, start + self.max_size // 2)
        if low >= end:
            return end

        pos = text.rfind("\n\n", low, end)
        if pos != -1:
            return pos + 2

        pos = text.rfind("\n", low, end)
        if pos != -1:
            return pos + 1

        last_sentence = None
        for match in _SENTENCE_END.finditer(text, low, end):
            last_sentence = match
        if last_sentence is not None:
            return last_sentence.end()

        pos = max(text.rfind(" ", low, end), text.rfind("\t", low, end))
        if pos != -1:
            return pos + 1

        # hard cut
        return end

    ##########################################
    ############### SECTIONS #################
    ##########################################

    def split_sections(self, text: str) -> list[TextSection]:
        """Split Markdown-style note text into sections by heading.

        Each section keeps its heading line. `heading_context` is the heading
        path, e.g. "Project > Notes". Text before the first heading becomes a
        "paragraph" section with an empty context.

        Args:
            text (str): The document text.

        Returns:
            list[TextSection]: Non-empty sections in document order.
        """
        sections: list[TextSection] = []
        stack: list[tuple[int, str]] = []
        current: list[str] = []
        context = ""
        in_code = False

        def flush() -> None:
            body = "".join(current)
            if body.strip():
                sections.append(
                    TextSection(
                        block_type="heading" if context else "paragraph",
                        heading_context=context,
                        text=body,
                    )
                )
            current.clear()

        for line in text.splitlines(keepends=True):
            if line.lstrip().startswith("```"):
                in_code = not in_code
            match = None if in_code else _HEADING.match(line.rstrip("\r\n"))
            if match:
                flush()
                level = len(match.group(1))
                while stack and stack[-1][0] >= level:
                    stack.pop()
                stack.append((level, match.group(2)))
                context = " > ".join(title for _, title in stack)
            current.append(line)
        flush()
        return sections
