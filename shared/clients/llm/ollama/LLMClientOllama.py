import json

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import CompletionError


class LLMClientOllama(LLMClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Ollama"

    def _get_default_model(self) -> str:
        return "llama3.1"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    def _get_endpoint_chat(self) -> str:
        return "/api/chat"

    ################ PAYLOAD BUILDER ##################
    def get_chat_payload(self, messages: list[dict], stream: bool = False) -> dict:
        """Build the Ollama chat request body.

        Returns:
            dict: {"model": "...", "messages": [...], "stream": ..., "options": {...}}
        """
        return {
            "model": self.chat_model,
            "messages": messages,
            "stream": stream,
            "options": {"temperature": self.temperature},
        }

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_chat_response(self, response_data: dict) -> str:
        message = response_data.get("message", {}) if isinstance(response_data, dict) else {}
        content = message.get("content")
        if content is None:
            raise CompletionError("Ollama chat response does not contain a valid message.")
        return content

    def extract_stream_delta(self, line: str) -> tuple[str | None, bool]:
        """Ollama streams newline-delimited JSON objects; the last one has done=true."""
        try:
            chunk = json.loads(line)
        except json.JSONDecodeError as exc:
            raise CompletionError("Malformed line in Ollama chat stream.") from exc
        if chunk.get("error"):
            raise CompletionError(f"Ollama chat stream failed: {chunk['error']}")
        content = (chunk.get("message") or {}).get("content")
        return content or None, bool(chunk.get("done"))
