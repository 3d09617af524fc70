"""Document source backed by a directory of JSON files, one per note (<doc_id>.json)."""

import asyncio
import json
import os
import re

from pydantic import ValidationError

from shared.clients.docs.DocumentSourceInterface import DocumentSourceInterface
from shared.clients.docs.models.Document import DocumentRecord
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.\-]+$")


class DocumentSourceLocal(DocumentSourceInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._path = os.path.abspath(os.path.expanduser(
            self.get_config_val("PATH", default=self._default_path(), val_type="string")
        ))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Local"

    def get_path(self) -> str:
        return self._path

    ################ CONFIG ##################
    def _default_path(self) -> str:
        return os.path.join(self._helper_config.get_data_dir(), "documents")

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="PATH", val_type="string", default=self._default_path()),
        ]

    def _file_for(self, doc_id: str) -> str:
        if not _SAFE_ID.match(doc_id) or doc_id in (".", ".."):
            raise ValueError(f"Invalid document id '{doc_id}'.")
        return os.path.join(self._path, f"{doc_id}.json")

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        os.makedirs(self._path, exist_ok=True)

    async def close(self) -> None:
        pass

    async def do_healthcheck(self) -> bool:
        return os.path.isdir(self._path)

    ##########################################
    ############### REQUESTS #################
    ##########################################

    def _read_file(self, file_path: str) -> DocumentRecord | None:
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                doc = DocumentRecord.model_validate(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            self.logging.warning("Skipping unreadable document file '%s': %s", file_path, exc)
            return None
        # blocks always belong to the document they are stored in
        for block in doc.external_blocks:
            block.doc_id = doc.id
        return doc

    def _read_all(self) -> list[DocumentRecord]:
        if not os.path.isdir(self._path):
            return []
        docs: list[DocumentRecord] = []
        for name in sorted(os.listdir(self._path)):
            if name.endswith(".json"):
                doc = self._read_file(os.path.join(self._path, name))
                if doc is not None:
                    docs.append(doc)
        return docs

    async def do_get_documents(self) -> list[DocumentRecord]:
        return await asyncio.to_thread(self._read_all)

    async def do_get_document(self, doc_id: str) -> DocumentRecord | None:
        try:
            file_path = self._file_for(doc_id)
        except ValueError:
            return None
        return await asyncio.to_thread(self._read_file, file_path)

    async def do_save_document(self, doc: DocumentRecord) -> None:
        """Write a document file atomically."""
        file_path = self._file_for(doc.id)

        def write() -> None:
            os.makedirs(self._path, exist_ok=True)
            tmp_path = f"{file_path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(doc.model_dump(), f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, file_path)

        await asyncio.to_thread(write)

    async def do_delete_document(self, doc_id: str) -> bool:
        file_path = self._file_for(doc_id)

        def delete() -> bool:
            try:
                os.remove(file_path)
                return True
            except FileNotFoundError:
                return False

        return await asyncio.to_thread(delete)
