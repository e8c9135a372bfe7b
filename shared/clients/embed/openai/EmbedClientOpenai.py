from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import EmbeddingError


class EmbedClientOpenai(EmbedClientInterface):
    """Embedding client for OpenAI and OpenAI-compatible /embeddings endpoints."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.openai.com/v1", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openai"

    def _get_default_model(self) -> str:
        return "text-embedding-3-small"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.openai.com/v1"),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/models"

    def get_endpoint_embedding(self) -> str:
        return "/embeddings"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        return {"model": self.embed_model, "input": texts}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_indexed_embeddings(self, response_data: dict) -> list[tuple[int, list[float]]]:
        """Extract (index, embedding) pairs from an OpenAI /embeddings response.

        Raises:
            EmbeddingError: If "data" is missing or an item lacks index or embedding.
        """
        data = response_data.get("data") if isinstance(response_data, dict) else None
        if not isinstance(data, list):
            raise EmbeddingError("OpenAI embedding response does not contain a 'data' list.")
        pairs: list[tuple[int, list[float]]] = []
        for item in data:
            if not isinstance(item, dict) or "index" not in item or "embedding" not in item:
                raise EmbeddingError("OpenAI embedding response item is missing 'index' or 'embedding'.")
            pairs.append((item["index"], item["embedding"]))
        usage = response_data.get("usage") or {}
        if usage:
            self.logging.debug("Embedding usage: %s prompt tokens.", usage.get("prompt_tokens"))
        return pairs
