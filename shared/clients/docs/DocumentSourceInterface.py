from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.docs.models.Document import DocumentRecord, ExternalBlockDescriptor
from shared.helper.HelperConfig import HelperConfig


class DocumentSourceInterface(ClientInterface):
    """Read access to the notes owned by the host application.

    The engine never edits notes; it only reads their plain text, tags and
    external blocks. Local implementations may offer writes for tooling.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "docs"
        """
        return "docs"

    ##########################################
    ############### REQUESTS #################
    ##########################################

    @abstractmethod
    async def do_get_documents(self) -> list[DocumentRecord]:
        """
        Returns every document known to the host.

        Returns:
            list[DocumentRecord]: All documents with content, tags and external blocks.
        """
        pass

    @abstractmethod
    async def do_get_document(self, doc_id: str) -> DocumentRecord | None:
        """
        Returns a single document, or None if it does not exist (anymore).

        Args:
            doc_id (str): The document id.
        """
        pass

    async def do_get_external_blocks(self, doc_id: str) -> list[ExternalBlockDescriptor]:
        """
        Returns the external blocks (bookmarks, files, folders) of a document.

        Args:
            doc_id (str): The document id.

        Returns:
            list[ExternalBlockDescriptor]: The blocks, empty if the document does not exist.
        """
        doc = await self.do_get_document(doc_id)
        return list(doc.external_blocks) if doc else []

    async def do_count_documents(self) -> int:
        return len(await self.do_get_documents())
