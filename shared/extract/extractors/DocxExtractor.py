import io
import os
import zipfile

import docx
from docx.opc.exceptions import PackageNotFoundError

from shared.extract.extractors.FileExtractorInterface import FileExtractorInterface
from shared.models.errors import ExtractionError
from shared.models.external import ExtractedContent


class DocxExtractor(FileExtractorInterface):
    """Paragraph text of a Word document, followed by the text of its tables."""

    def get_extensions(self) -> tuple[str, ...]:
        return (".docx",)

    def extract_bytes(self, data: bytes, name: str) -> ExtractedContent:
        try:
            document = docx.Document(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise ExtractionError(f"Cannot read DOCX '{name}': {exc}", locator=name) from exc

        parts = [p.text for p in document.paragraphs if p.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))

        title = document.core_properties.title or os.path.splitext(os.path.basename(name))[0]
        return ExtractedContent(text="\n".join(parts).strip(), title=title)
