from shared.clients.ClientManager import ClientManager
from shared.clients.llm.LLMClientInterface import LLMClientInterface


class LLMClientManager(ClientManager):
    """Completion backend selected by LLM_ENGINE ("openai" or "ollama")."""

    client_type = "llm"
    package = "llm"
    class_prefix = "LLMClient"
    default_engine = "openai"
    expected_type = LLMClientInterface

    def get_client(self) -> LLMClientInterface:
        return self.client
