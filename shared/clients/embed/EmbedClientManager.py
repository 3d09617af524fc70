from shared.helper.HelperConfig import HelperConfig
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.models.config import EmbeddingConfig
from shared.models.errors import ConfigurationError


class EmbedClientManager:
    """
    Manager class to instantiate the Embed client matching the EmbeddingConfig provider.
    """

    def __init__(self, helper_config: HelperConfig, embedding_config: EmbeddingConfig):
        self.helper_config = helper_config
        self.embedding_config = embedding_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_config(self) -> str:
        """
        Reads the provider from the embedding configuration.

        Returns:
            str: The capitalized provider name, e.g. "Ollama".

        Raises:
            ConfigurationError: If no provider is configured.
        """
        engine = self.embedding_config.provider
        if not engine or not engine.strip():
            raise ConfigurationError("No embedding provider specified in configuration.", field="provider")

        # lowercase all and uppercase first letter to match the class names
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> EmbedClientInterface:
        """
        Initializes the Embed client for the configured provider.

        Returns:
            EmbedClientInterface: An instance of the Embed client that implements the EmbedClientInterface.

        Raises:
            ConfigurationError: If the provider is unsupported or its settings are invalid.
        """
        self.embedding_config.validate_values()
        engine = self._get_engine_from_config()
        className = f"EmbedClient{engine}"
        # import the class from shared.clients.embed.{engine}
        try:
            module = __import__(
                f"shared.clients.embed.{engine.lower()}.{className}",
                fromlist=[className],
            )
            client_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ConfigurationError(f"Unsupported embedding provider specified: '{engine}'. Error: {e}", field="provider")
        client = client_class(helper_config=self.helper_config, embedding_config=self.embedding_config)
        self.logging.debug("Instantiated Embed client for provider: %s", engine)
        return client

    def get_client(self) -> EmbedClientInterface:
        """
        Returns the instantiated Embed client.

        Returns:
            EmbedClientInterface: The Embed client instance.
        """
        return self.client
