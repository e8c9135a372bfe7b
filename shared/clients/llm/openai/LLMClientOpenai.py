import json

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import CompletionError


class LLMClientOpenai(LLMClientInterface):
    """Chat client for OpenAI and OpenAI-compatible /chat/completions endpoints."""

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
        return "gpt-4o-mini"

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

    def _get_endpoint_chat(self) -> str:
        return "/chat/completions"

    ################ PAYLOAD BUILDER ##################
    def get_chat_payload(self, messages: list[dict], stream: bool = False) -> dict:
        """Build the OpenAI chat request body.

        Returns:
            dict: {"model": "...", "messages": [...], "temperature": ..., "stream": ...}
        """
        return {
            "model": self.chat_model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": stream,
        }

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_chat_response(self, response_data: dict) -> str:
        choices = response_data.get("choices") if isinstance(response_data, dict) else None
        if not choices:
            raise CompletionError("OpenAI chat response contains no choices.")
        content = (choices[0].get("message") or {}).get("content")
        if content is None:
            raise CompletionError("OpenAI chat response choice has no message content.")
        return content

    def extract_stream_delta(self, line: str) -> tuple[str | None, bool]:
        """Parse a server-sent event line ("data: {...}" or "data: [DONE]")."""
        if not line.startswith("data:"):
            # comments and other SSE fields carry no content
            return None, False
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return None, True
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError as exc:
            raise CompletionError("Malformed chunk in OpenAI chat stream.") from exc
        choices = chunk.get("choices") or []
        if not choices:
            return None, False
        delta = (choices[0].get("delta") or {}).get("content")
        return delta, False
