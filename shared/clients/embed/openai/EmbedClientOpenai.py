from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import DEFAULT_OPENAI_BASE_URL, EmbeddingConfig, EnvConfig

# substrings of model ids that produce embeddings on OpenAI-compatible servers
EMBEDDING_MODEL_MARKERS = ("embed", "bge", "e5", "gte")


class EmbedClientOpenai(EmbedClientInterface):
    """OpenAI and OpenAI-compatible (/v1/embeddings) providers."""

    def __init__(self, helper_config: HelperConfig, embedding_config: EmbeddingConfig):
        super().__init__(helper_config=helper_config, embedding_config=embedding_config)
        base_url = self.get_config_val("BASE_URL", default=DEFAULT_OPENAI_BASE_URL, val_type="string")
        # the shared default points at ollama, which is never right for this provider
        if base_url.rstrip("/") == "http://localhost:11434":
            base_url = DEFAULT_OPENAI_BASE_URL
        self._base_url = base_url
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openai"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="MODEL", val_type="string", default=None),
            EnvConfig(env_key="BASE_URL", val_type="string", default=DEFAULT_OPENAI_BASE_URL),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/models"

    def _get_endpoint_models(self) -> str:
        return "/models"

    def get_endpoint_embedding(self) -> str:
        return "/embeddings"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        return {"model": self.embed_model, "input": texts, "encoding_format": "float"}

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from an OpenAI /embeddings response.

        The "data" entries carry an "index" and are not guaranteed to be ordered.

        Raises:
            ValueError: If the response does not contain valid embeddings.
        """
        data = response_data.get("data") if isinstance(response_data, dict) else None
        if not data or not isinstance(data, list):
            raise ValueError("OpenAI response does not contain a 'data' list.")
        try:
            ordered = sorted(data, key=lambda item: int(item.get("index", 0)))
            embeddings = [item["embedding"] for item in ordered]
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"OpenAI response has malformed data entries: {exc}")
        if not all(embeddings):
            raise ValueError("OpenAI response contains an empty embedding.")
        return embeddings

    def extract_models_from_response(self, response_data: dict) -> list[str]:
        data = response_data.get("data") if isinstance(response_data, dict) else None
        if data is None:
            raise ValueError("OpenAI model list has no 'data' key.")
        ids = [str(model.get("id")) for model in data if model.get("id")]
        embedding_ids = [model_id for model_id in ids if any(m in model_id.lower() for m in EMBEDDING_MODEL_MARKERS)]
        # servers with unusual model names: show everything rather than nothing
        return embedding_ids or ids
