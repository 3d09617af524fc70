"""Registry of file extractors by extension."""

from shared.extract.extractors.FileExtractorInterface import FileExtractorInterface
from shared.extract.extractors.DocxExtractor import DocxExtractor
from shared.extract.extractors.HtmlExtractor import HtmlExtractor
from shared.extract.extractors.PdfExtractor import PdfExtractor
from shared.extract.extractors.TextExtractor import TextExtractor

_REGISTRY: dict[str, FileExtractorInterface] = {}


def register_extractor(extractor: FileExtractorInterface) -> None:
    """Register an extractor for all of its extensions, replacing earlier registrations."""
    for ext in extractor.get_extensions():
        _REGISTRY[ext.lower()] = extractor


def get_extractor(ext: str) -> FileExtractorInterface | None:
    """
    Returns the extractor for a file extension (with or without leading dot), or None.
    """
    ext = ext.lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return _REGISTRY.get(ext)


def supported_extensions() -> set[str]:
    return set(_REGISTRY)


for _extractor in (TextExtractor(), HtmlExtractor(), PdfExtractor(), DocxExtractor()):
    register_extractor(_extractor)
