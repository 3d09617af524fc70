"""Plain substring search over document titles, tags and content.

Kept separate from semantic search: results carry a snippet instead of a
score and never touch the embedding provider.
"""

from shared.clients.docs.DocumentSourceInterface import DocumentSourceInterface
from shared.clients.docs.models.Document import DocumentRecord
from shared.helper.HelperConfig import HelperConfig
from shared.models.search import LexicalSearchResult

TITLE_MATCH_SNIPPET = "Title match"
SNIPPET_BEFORE = 20
SNIPPET_AFTER = 30


class LexicalSearchService:
    """In-memory case-insensitive index, loaded at boot and updated on save and delete."""

    def __init__(self, helper_config: HelperConfig, document_source: DocumentSourceInterface) -> None:
        self.logging = helper_config.get_logger()
        self._document_source = document_source
        # doc_id -> document, insertion order follows the document source
        self._docs: dict[str, DocumentRecord] = {}
        self._lowered: dict[str, str] = {}

    ##########################################
    ################ INDEX ###################
    ##########################################

    async def do_load(self) -> int:
        """(Re)build the index from the document source. Returns the number of indexed documents."""
        docs = await self._document_source.do_get_documents()
        self._docs.clear()
        self._lowered.clear()
        for doc in docs:
            self._put(doc)
        self.logging.info("Lexical index loaded with %d document(s).", len(self._docs))
        return len(self._docs)

    async def do_refresh_document(self, doc_id: str) -> None:
        doc = await self._document_source.do_get_document(doc_id)
        if doc is None:
            self.remove_document(doc_id)
        else:
            self._put(doc)

    def remove_document(self, doc_id: str) -> None:
        self._docs.pop(doc_id, None)
        self._lowered.pop(doc_id, None)

    def _put(self, doc: DocumentRecord) -> None:
        self._docs[doc.id] = doc
        self._lowered[doc.id] = doc.content.lower()

    ##########################################
    ################ SEARCH ##################
    ##########################################

    def search(self, query: str) -> list[LexicalSearchResult]:
        """Find documents whose title, a tag or the content contains `query`.

        A title match wins over a tag match, which wins over a content match;
        each document appears at most once.

        Returns:
            list[LexicalSearchResult]: Matches in document order, empty for a blank query.
        """
        needle = query.strip().lower()
        if not needle:
            return []

        results: list[LexicalSearchResult] = []
        for doc_id, doc in self._docs.items():
            if needle in doc.title.lower():
                results.append(LexicalSearchResult(id=doc_id, title=doc.title, snippet=TITLE_MATCH_SNIPPET))
                continue
            tag = next((t for t in doc.tags if needle in t.lower()), None)
            if tag is not None:
                results.append(LexicalSearchResult(id=doc_id, title=doc.title, snippet=f"Tag: {tag}"))
                continue
            position = self._lowered[doc_id].find(needle)
            if position >= 0:
                results.append(LexicalSearchResult(
                    id=doc_id,
                    title=doc.title,
                    snippet=self._snippet(doc.content, self._lowered[doc_id], position, len(needle)),
                ))
        return results

    @staticmethod
    def _snippet(text: str, lowered: str, position: int, length: int) -> str:
        # lower() can change the length of some characters, fall back to the lowered text then
        source = text if len(text) == len(lowered) else lowered
        start = max(0, position - SNIPPET_BEFORE)
        end = min(len(source), position + length + SNIPPET_AFTER)
        snippet = " ".join(source[start:end].split())
        if start > 0:
            snippet = "..." + snippet
        if end < len(source):
            snippet += "..."
        return snippet
