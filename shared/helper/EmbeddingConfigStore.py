"""Persistence of the user editable embedding settings (rag_config.json)."""

import json
import os

from pydantic import ValidationError

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EmbeddingConfig
from shared.models.errors import ConfigurationError

CONFIG_FILE_NAME = "rag_config.json"


class EmbeddingConfigStore:
    """Loads and saves EmbeddingConfig as JSON inside the data directory."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self._path = helper_config.get_path_val(
            "RAG_CONFIG_PATH",
            default=os.path.join(helper_config.get_data_dir(), CONFIG_FILE_NAME),
        )

    def get_path(self) -> str:
        return self._path

    def load(self) -> EmbeddingConfig:
        """Load the stored config.

        A missing file yields the defaults. An unreadable or invalid file is
        logged and replaced by the defaults as well.

        Returns:
            EmbeddingConfig: The loaded configuration.
        """
        if not os.path.exists(self._path):
            self.logging.info("No embedding config at '%s', using defaults.", self._path)
            return EmbeddingConfig()
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                return EmbeddingConfig.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            self.logging.warning("Embedding config at '%s' is unreadable (%s). Using defaults.", self._path, exc)
            return EmbeddingConfig()

    def save(self, config: EmbeddingConfig) -> None:
        """Validate and write the config atomically.

        Raises:
            ConfigurationError: If the config is invalid or cannot be written.
        """
        config.validate_values()
        tmp_path = f"{self._path}.tmp"
        try:
            os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(config.model_dump(), f, indent=2)
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise ConfigurationError(f"Could not write embedding config to '{self._path}': {exc}") from exc
        self.logging.info("Saved embedding config (%s) to '%s'.", config.model_tag, self._path)
