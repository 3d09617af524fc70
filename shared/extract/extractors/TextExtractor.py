import os

from shared.extract.extractors.FileExtractorInterface import FileExtractorInterface
from shared.models.external import ExtractedContent


class TextExtractor(FileExtractorInterface):
    """Plain text and Markdown pass through unchanged (UTF-8, undecodable bytes replaced)."""

    def get_extensions(self) -> tuple[str, ...]:
        return (".txt", ".md", ".markdown")

    def extract_bytes(self, data: bytes, name: str) -> ExtractedContent:
        text = data.decode("utf-8", errors="replace")
        # strip a BOM written by some editors
        if text.startswith("\ufeff"):
            text = text[1:]
        return ExtractedContent(text=text, title=os.path.splitext(os.path.basename(name))[0])
