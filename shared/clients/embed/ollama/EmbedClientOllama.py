from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EmbeddingConfig, EnvConfig


class EmbedClientOllama(EmbedClientInterface):
    def __init__(self, helper_config: HelperConfig, embedding_config: EmbeddingConfig):
        super().__init__(helper_config=helper_config, embedding_config=embedding_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Ollama"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="MODEL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        # plain ollama has no auth, a reverse proxy in front of it may
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        # root on ollama
        return ""

    def _get_endpoint_models(self) -> str:
        return "/api/tags"

    def get_endpoint_embedding(self) -> str:
        return "/api/embed"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the Ollama embedding request body.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: {"model": "...", "input": [...]}
        """
        return {"model": self.embed_model, "input": texts}

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from an Ollama /api/embed response.

        Raises:
            ValueError: If the response does not contain valid embeddings.
        """
        embeddings = response_data.get("embeddings") if isinstance(response_data, dict) else None
        if not embeddings or not isinstance(embeddings, list) or not all(embeddings):
            keys = list(response_data.keys()) if isinstance(response_data, dict) else type(response_data).__name__
            raise ValueError(f"Ollama response does not contain valid embeddings. Response keys: {keys}")
        return embeddings

    def extract_models_from_response(self, response_data: dict) -> list[str]:
        models = response_data.get("models") if isinstance(response_data, dict) else None
        if models is None:
            raise ValueError("Ollama model list has no 'models' key.")
        names: list[str] = []
        for model in models:
            name = str(model.get("name") or model.get("model") or "")
            # "nomic-embed-text:latest" and "nomic-embed-text" are the same model
            if name.endswith(":latest"):
                name = name[: -len(":latest")]
            if name:
                names.append(name)
        return names
