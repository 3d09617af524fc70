from pydantic import BaseModel

from shared.models.errors import ConfigurationError

SUPPORTED_PROVIDERS = ("ollama", "openai")
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required by a client.

    Attributes:
        env_key (str): The key/name of the configuration value to read.
        val_type (str): The expected type of the value. Supported types are "string", "number", "bool", and "list".
        default (str | int | bool | list | None): An optional default value if the value is not set. If None, the value is required and an error will be raised if it is not set.
    """

    env_key: str
    val_type: str
    default: str | int | bool | list | None = None


class EmbeddingConfig(BaseModel):
    """
    User editable embedding settings, persisted as rag_config.json in the data directory.

    Changing `model` (or `provider`) invalidates every stored vector, see `model_tag`.

    Attributes:
        provider (str): Embedding backend, "ollama" or "openai".
        base_url (str): Base URL of the provider API.
        model (str): Embedding model name.
        api_key (str): API key, required for "openai".
        max_chunk_size (int): Maximum characters per chunk.
        overlap (int): Characters shared between consecutive chunks.
    """

    provider: str = "ollama"
    base_url: str = DEFAULT_OLLAMA_BASE_URL
    model: str = "nomic-embed-text"
    api_key: str = ""
    max_chunk_size: int = 800
    overlap: int = 100

    @property
    def model_tag(self) -> str:
        """Model-version tag stored with every chunk, e.g. "ollama:nomic-embed-text"."""
        return f"{self.provider.strip().lower()}:{self.model.strip()}"

    def validate_values(self) -> None:
        """
        Validates the settings without contacting the provider.

        Raises:
            ConfigurationError: If a value is missing or out of range.
        """
        provider = self.provider.strip().lower()
        if provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unsupported embedding provider '{self.provider}'. Supported: {', '.join(SUPPORTED_PROVIDERS)}.",
                field="provider",
            )
        if not self.model.strip():
            raise ConfigurationError("Embedding model must not be empty.", field="model")
        if provider == "ollama" and not self.base_url.strip():
            raise ConfigurationError("Base URL is required for the ollama provider.", field="base_url")
        if provider == "openai" and not self.api_key.strip():
            raise ConfigurationError("API key is required for the openai provider.", field="api_key")
        if self.max_chunk_size <= 0:
            raise ConfigurationError("max_chunk_size must be greater than 0.", field="max_chunk_size")
        if self.overlap < 0 or self.overlap >= self.max_chunk_size:
            raise ConfigurationError(
                f"overlap must be >= 0 and smaller than max_chunk_size ({self.max_chunk_size}), got {self.overlap}.",
                field="overlap",
            )
