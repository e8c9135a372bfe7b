from shared.clients.ClientManager import ClientManager
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface


class EmbedClientManager(ClientManager):
    """Embedding backend selected by EMBED_ENGINE ("openai" or "ollama")."""

    client_type = "embed"
    package = "embed"
    class_prefix = "EmbedClient"
    default_engine = "openai"
    expected_type = EmbedClientInterface

    def get_client(self) -> EmbedClientInterface:
        return self.client
