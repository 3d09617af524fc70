from abc import abstractmethod
from typing import Any

import httpx

from shared.clients.HttpClientInterface import HttpClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EmbeddingConfig
from shared.models.errors import ConfigurationError, EmbeddingError

DETECT_DIMENSION_PROBE = "test"


class EmbedClientInterface(HttpClientInterface):
    """Embedding provider client.

    Unlike the other clients, provider settings come from the user editable
    EmbeddingConfig, not from the environment. Only the request timeout
    (EMBED_TIMEOUT) and the batch size (EMBED_BATCH_SIZE) are process settings.
    """

    def __init__(self, helper_config: HelperConfig, embedding_config: EmbeddingConfig):
        self._embedding_config = embedding_config
        super().__init__(helper_config=helper_config)

        self.embed_model = embedding_config.model.strip()
        self.model_tag = embedding_config.model_tag
        self.batch_size = int(helper_config.get_number_val("EMBED_BATCH_SIZE", default=32))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    def get_embedding_config(self) -> EmbeddingConfig:
        return self._embedding_config

    ################ CONFIG ##################
    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads a provider setting from the EmbeddingConfig (e.g. "BASE_URL" -> base_url).

        Raises:
            ConfigurationError: If the value is empty and no default is given.
        """
        value = getattr(self._embedding_config, raw_key.lower(), None)
        if isinstance(value, str):
            value = value.strip()
        if value in (None, ""):
            if default is None:
                raise ConfigurationError(
                    f"'{raw_key.lower()}' is required for the {self.get_engine_name()} embedding provider.",
                    field=raw_key.lower(),
                )
            return default
        return value

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_models(self) -> str:
        """
        Returns the endpoint path for model listing requests.

        Returns:
            str: The endpoint path for model listing requests (e.g. "/api/tags")
        """
        pass

    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]}  (already ordered)
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]} (needs sorting)

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ValueError: If the response format is invalid or embeddings are empty.
        """
        pass

    @abstractmethod
    def extract_models_from_response(self, response_data: dict) -> list[str]:
        """Extract embedding model names from a model listing response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[str]: Model names usable as EmbeddingConfig.model.
        """
        pass

    def extract_error_message(self, response: httpx.Response) -> str:
        """Return the provider's error message from an error response, or the raw body."""
        try:
            data = response.json()
        except ValueError:
            return response.text[:200]
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        return response.text[:200]

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Embed one or more texts, preserving input order.

        Large inputs are sent in batches of EMBED_BATCH_SIZE.

        Args:
            texts (list[str] | str): One or more non-blank texts.

        Returns:
            list[list[float]]: One vector per input text, in input order.

        Raises:
            ValueError: If the batch is empty or contains a blank text (no request is sent).
            EmbeddingError: On transport errors, timeouts, error statuses, undecodable
                responses, or when the provider returns the wrong number of vectors.
        """
        texts = [texts] if isinstance(texts, str) else list(texts)
        if not texts:
            raise ValueError("Cannot embed an empty batch.")
        for i, text in enumerate(texts):
            if not isinstance(text, str) or not text.strip():
                raise ValueError(f"Cannot embed blank text at position {i}.")

        vectors: list[list[float]] = []
        for batch_start in range(0, len(texts), self.batch_size):
            batch = texts[batch_start: batch_start + self.batch_size]
            vectors.extend(await self._do_embed_batch(batch))
        return vectors

    async def _do_embed_batch(self, texts: list[str]) -> list[list[float]]:
        provider = self.get_engine_name()
        body = self.get_embed_payload(texts)
        try:
            response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        except httpx.TimeoutException as exc:
            raise EmbeddingError(f"Embedding request to {provider} timed out after {self.timeout}s.", provider=provider) from exc
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Embedding request to {provider} failed: {exc}", provider=provider) from exc

        if response.status_code != 200:
            message = self.extract_error_message(response)
            self.logging.error(
                "Embedding request failed: status %d, body: %s",
                response.status_code,
                message,
            )
            raise EmbeddingError(
                f"{provider} returned status {response.status_code}: {message}",
                provider=provider,
                status_code=response.status_code,
            )

        try:
            vectors = self.extract_embeddings_from_response(response.json())
        except ValueError as exc:
            raise EmbeddingError(f"Could not decode {provider} embedding response: {exc}", provider=provider, status_code=-1) from exc

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"{provider} returned {len(vectors)} embeddings for {len(texts)} inputs.",
                provider=provider,
                status_code=-1,
            )
        return vectors

    async def do_fetch_models(self) -> list[str]:
        """Fetch the embedding models offered by the provider.

        Returns:
            list[str]: Sorted model names.

        Raises:
            EmbeddingError: If the provider cannot be reached or answers with an error.
        """
        provider = self.get_engine_name()
        try:
            response = await self.do_request(method="GET", endpoint=self._get_endpoint_models())
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Listing models of {provider} failed: {exc}", provider=provider) from exc
        if response.status_code != 200:
            raise EmbeddingError(
                f"{provider} returned status {response.status_code}: {self.extract_error_message(response)}",
                provider=provider,
                status_code=response.status_code,
            )
        try:
            return sorted(set(self.extract_models_from_response(response.json())))
        except ValueError as exc:
            raise EmbeddingError(f"Could not decode {provider} model list: {exc}", provider=provider, status_code=-1) from exc

    async def do_detect_dimension(self) -> int:
        """Embed a probe text and return the vector dimension of the configured model.

        Raises:
            EmbeddingError: If the provider rejects the request.
        """
        vectors = await self.do_embed([DETECT_DIMENSION_PROBE])
        return len(vectors[0])
