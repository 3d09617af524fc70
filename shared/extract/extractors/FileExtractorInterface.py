from abc import ABC, abstractmethod
import os

from shared.models.external import ExtractedContent


class FileExtractorInterface(ABC):
    """Turns the bytes of one file format into plain text.

    Extractors are synchronous and CPU bound; callers run them in a worker
    thread. They raise ExtractionError when the bytes cannot be parsed.
    """

    @abstractmethod
    def get_extensions(self) -> tuple[str, ...]:
        """
        Returns the lowercase file extensions handled by this extractor, e.g. (".pdf",)
        """
        pass

    @abstractmethod
    def extract_bytes(self, data: bytes, name: str) -> ExtractedContent:
        """
        Extract text from raw file content.

        Args:
            data (bytes): The file content.
            name (str): File name or URL, used for titles and error messages.

        Returns:
            ExtractedContent: The extracted text and title.

        Raises:
            ExtractionError: If the content cannot be parsed.
        """
        pass

    def extract_file(self, path: str) -> ExtractedContent:
        with open(path, "rb") as f:
            data = f.read()
        return self.extract_bytes(data, os.path.basename(path))
