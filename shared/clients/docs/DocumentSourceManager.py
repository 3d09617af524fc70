from shared.helper.HelperConfig import HelperConfig
from shared.clients.docs.DocumentSourceInterface import DocumentSourceInterface

DEFAULT_DOCS_ENGINE = "local"


class DocumentSourceManager:
    """
    Manager class to instantiate the document source based on configuration (DOCS_ENGINE).
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _initialize_client(self) -> DocumentSourceInterface:
        """
        Raises:
            ValueError: If the engine is unsupported.
        """
        engine = self.helper_config.get_string_val("DOCS_ENGINE", default=DEFAULT_DOCS_ENGINE).strip().lower().capitalize()
        className = f"DocumentSource{engine}"
        try:
            module = __import__(
                f"shared.clients.docs.{engine.lower()}.{className}",
                fromlist=[className],
            )
            client_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported document source specified: '{engine}'. Error: {e}")
        self.logging.debug("Instantiated document source for engine: %s", engine)
        return client_class(helper_config=self.helper_config)

    def get_client(self) -> DocumentSourceInterface:
        return self.client
