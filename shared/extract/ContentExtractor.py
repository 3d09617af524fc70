"""Content extraction for external blocks: web bookmarks, single files and folders."""

import asyncio
import os

import httpx

from shared.extract.ExtractorRegistry import get_extractor, supported_extensions
from shared.extract.extractors.FileExtractorInterface import FileExtractorInterface
from shared.extract.extractors.HtmlExtractor import HtmlExtractor
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import ExtractionError
from shared.models.external import ExtractedContent, ExtractedItem

SKIPPED_DIRS = {"node_modules", "vendor", "__pycache__"}
THIN_CONTENT_CHARS = 200
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

# source kinds that force a specific extractor regardless of the file extension
_KIND_EXTENSIONS = {
    "text": ".txt",
    "markdown": ".md",
    "html": ".html",
    "pdf": ".pdf",
    "docx": ".docx",
}


class ContentExtractor:
    """Turns a locator (URL, file path or folder path) into plain text.

    Only an unreachable top-level locator raises ExtractionError. Inside a
    folder, every failing file is recorded in `items` and skipped.
    """

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self.timeout = helper_config.get_number_val("EXTRACT_TIMEOUT", default=15)
        self.max_depth = int(helper_config.get_number_val("FOLDER_MAX_DEPTH", default=10))
        self.max_files = int(helper_config.get_number_val("FOLDER_MAX_FILES", default=500))
        self.max_bytes = int(helper_config.get_number_val("EXTRACT_MAX_BYTES", default=25 * 1024 * 1024))
        self._html = HtmlExtractor()
        self._client: httpx.AsyncClient | None = None

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    ##########################################
    ################ EXTRACT #################
    ##########################################

    async def do_extract(self, source_kind: str, locator: str) -> ExtractedContent:
        """Extract text for any supported source kind.

        Args:
            source_kind (str): "bookmark", "file", "folder", or a format kind
                ("text", "markdown", "html", "pdf", "docx").
            locator (str): URL or filesystem path.

        Returns:
            ExtractedContent: The extracted content.

        Raises:
            ExtractionError: If the locator is unreachable or the kind is unsupported.
        """
        kind = source_kind.strip().lower()
        if kind == "bookmark":
            return await self.do_extract_url(locator)
        if kind == "folder":
            return await self.do_extract_folder(locator)
        if kind == "file":
            return await self.do_extract_file(locator)
        if kind in _KIND_EXTENSIONS:
            return await self.do_extract_file(locator, extractor=get_extractor(_KIND_EXTENSIONS[kind]))
        raise ExtractionError(f"Unsupported source kind '{source_kind}'.", locator=locator)

    async def do_extract_file(self, path: str, extractor: FileExtractorInterface | None = None) -> ExtractedContent:
        """Extract a single file, picking the extractor by extension unless one is given.

        Raises:
            ExtractionError: If the file does not exist, is too large, has an
                unsupported extension, cannot be parsed or times out.
        """
        path = os.path.abspath(os.path.expanduser(path))
        if not os.path.isfile(path):
            raise ExtractionError(f"File not found: '{path}'.", locator=path)
        if extractor is None:
            extractor = get_extractor(os.path.splitext(path)[1])
            if extractor is None:
                raise ExtractionError(
                    f"Unsupported file type '{os.path.splitext(path)[1] or path}'. "
                    f"Supported: {', '.join(sorted(supported_extensions()))}.",
                    locator=path,
                )
        size = os.path.getsize(path)
        if size > self.max_bytes:
            raise ExtractionError(f"File '{path}' is too large ({size} bytes, limit {self.max_bytes}).", locator=path)

        try:
            content = await asyncio.wait_for(asyncio.to_thread(extractor.extract_file, path), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ExtractionError(f"Extracting '{path}' timed out after {self.timeout}s.", locator=path) from exc
        except OSError as exc:
            raise ExtractionError(f"Cannot read '{path}': {exc}", locator=path) from exc
        except ExtractionError:
            raise
        except Exception as exc:  # parser libraries raise their own error types
            raise ExtractionError(f"Cannot parse '{path}': {exc}", locator=path) from exc
        for warning in content.warnings:
            self.logging.warning(warning)
        if not content.title:
            content.title = os.path.basename(path)
        return content

    async def do_extract_url(self, url: str) -> ExtractedContent:
        """Fetch a web page and extract its readable text.

        Pages with thin body text (below 200 characters) get their Open Graph
        title and description prepended so the bookmark still carries meaning.

        Raises:
            ExtractionError: If the URL is invalid, unreachable or returns an error status.
        """
        if self._client is None:
            raise RuntimeError("ContentExtractor not initialised. Call boot() before extracting URLs.")
        if not url.startswith(("http://", "https://")):
            raise ExtractionError(f"Not an http(s) URL: '{url}'.", locator=url)

        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Fetching '{url}' failed: {exc}", locator=url) from exc
        if response.status_code >= 400:
            raise ExtractionError(f"Fetching '{url}' returned status {response.status_code}.", locator=url)

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        extractor: FileExtractorInterface | None = None
        if content_type == "application/pdf":
            extractor = get_extractor(".pdf")
        elif content_type.startswith("text/plain") or content_type == "text/markdown":
            extractor = get_extractor(".txt")

        try:
            if extractor is not None:
                content = await asyncio.wait_for(
                    asyncio.to_thread(extractor.extract_bytes, response.content, url), timeout=self.timeout
                )
            else:
                content = await asyncio.wait_for(
                    asyncio.to_thread(self._html.extract_html, response.text, str(response.url)), timeout=self.timeout
                )
        except asyncio.TimeoutError as exc:
            raise ExtractionError(f"Extracting '{url}' timed out after {self.timeout}s.", locator=url) from exc
        except ExtractionError:
            raise
        except Exception as exc:  # parser libraries raise their own error types
            raise ExtractionError(f"Cannot parse '{url}': {exc}", locator=url) from exc

        if len(content.text) < THIN_CONTENT_CHARS:
            header = "\n\n".join(part for part in (content.title, content.description) if part)
            if header and header not in content.text:
                content.text = f"{header}\n\n{content.text}".strip()
        for warning in content.warnings:
            self.logging.warning(warning)
        if not content.title:
            content.title = url
        return content

    async def do_extract_folder(self, path: str, max_depth: int | None = None) -> ExtractedContent:
        """Extract every supported file below a folder.

        Hidden entries and dependency/cache folders (node_modules, vendor,
        __pycache__) are skipped. `max_depth` 0 means only the folder itself.
        The combined text lists each file under a `## <relative path>` header.

        Raises:
            ExtractionError: If the folder does not exist.
        """
        root = os.path.abspath(os.path.expanduser(path))
        if not os.path.isdir(root):
            raise ExtractionError(f"Folder not found: '{root}'.", locator=root)
        depth_limit = self.max_depth if max_depth is None else max_depth

        files = await asyncio.to_thread(self._list_folder_files, root, depth_limit)
        if len(files) > self.max_files:
            self.logging.warning("Folder '%s' has %d supported files, indexing the first %d.", root, len(files), self.max_files)
            files = files[: self.max_files]

        items: list[ExtractedItem] = []
        sections: list[str] = []
        for file_path in files:
            rel_path = os.path.relpath(file_path, root)
            try:
                content = await self.do_extract_file(file_path)
            except ExtractionError as exc:
                self.logging.warning("Skipping '%s' in folder '%s': %s", rel_path, root, exc.message)
                items.append(ExtractedItem(path=rel_path, error=exc.message))
                continue
            items.append(ExtractedItem(path=rel_path, text=content.text))
            if content.text.strip():
                sections.append(f"## {rel_path}\n\n{content.text.strip()}")

        return ExtractedContent(
            text="\n\n".join(sections),
            title=os.path.basename(root.rstrip(os.sep)) or root,
            items=items,
        )

    def _list_folder_files(self, root: str, max_depth: int) -> list[str]:
        extensions = supported_extensions()
        found: list[str] = []
        for dir_path, dir_names, file_names in os.walk(root):
            rel = os.path.relpath(dir_path, root)
            depth = 0 if rel == "." else rel.count(os.sep) + 1
            if depth >= max_depth:
                dir_names[:] = []
            else:
                dir_names[:] = sorted(
                    d for d in dir_names if not d.startswith(".") and d not in SKIPPED_DIRS
                )
            for name in sorted(file_names):
                if name.startswith("."):
                    continue
                if os.path.splitext(name)[1].lower() in extensions:
                    found.append(os.path.join(dir_path, name))
        return found
