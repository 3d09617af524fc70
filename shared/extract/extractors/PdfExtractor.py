import io
import os

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from shared.extract.extractors.FileExtractorInterface import FileExtractorInterface
from shared.models.errors import ExtractionError
from shared.models.external import ExtractedContent


class PdfExtractor(FileExtractorInterface):
    """Text of every page joined by blank lines. A page that fails to parse is skipped and reported in `warnings`."""

    def get_extensions(self) -> tuple[str, ...]:
        return (".pdf",)

    def extract_bytes(self, data: bytes, name: str) -> ExtractedContent:
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = list(reader.pages)
        except (PdfReadError, ValueError, OSError) as exc:
            raise ExtractionError(f"Cannot read PDF '{name}': {exc}", locator=name) from exc

        parts: list[str] = []
        warnings: list[str] = []
        for page_number, page in enumerate(pages, start=1):
            try:
                text = page.extract_text() or ""
            except Exception as exc:  # pypdf raises a wide range of errors on broken pages
                warnings.append(f"Skipping page {page_number} of '{name}': {exc}")
                continue
            if text.strip():
                parts.append(text.strip())

        title = ""
        try:
            if reader.metadata and reader.metadata.title:
                title = str(reader.metadata.title)
        except PdfReadError:
            pass
        return ExtractedContent(
            text="\n\n".join(parts),
            title=title or os.path.splitext(os.path.basename(name))[0],
            warnings=warnings,
        )
