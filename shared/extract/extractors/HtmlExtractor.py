import os

import trafilatura

from shared.extract.extractors.FileExtractorInterface import FileExtractorInterface
from shared.models.external import ExtractedContent


class HtmlExtractor(FileExtractorInterface):
    """Readable text of an HTML page via trafilatura.

    The main content is extracted first; pages where that finds nothing
    (navigation-only pages, tiny documents) fall back to a plain text dump.
    """

    def get_extensions(self) -> tuple[str, ...]:
        return (".html", ".htm")

    def extract_bytes(self, data: bytes, name: str) -> ExtractedContent:
        html = data.decode("utf-8", errors="replace")
        return self.extract_html(html, url=name)

    def extract_html(self, html: str, url: str | None = None) -> ExtractedContent:
        text = trafilatura.extract(
            html,
            url=url,
            include_comments=False,
            include_tables=True,
            favor_recall=True,
        )
        if not text:
            text = trafilatura.html2txt(html) or ""

        title = description = site_name = ""
        metadata = trafilatura.extract_metadata(html, default_url=url)
        if metadata is not None:
            title = metadata.title or ""
            description = metadata.description or ""
            site_name = metadata.sitename or ""
        if not title and url and not url.startswith(("http://", "https://")):
            title = os.path.splitext(os.path.basename(url))[0]

        return ExtractedContent(
            text=text.strip(),
            title=title.strip(),
            description=description.strip(),
            site_name=site_name.strip(),
        )
