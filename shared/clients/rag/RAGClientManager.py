from shared.clients.ClientManager import ClientManager
from shared.clients.rag.RAGClientInterface import RAGClientInterface


class RAGClientManager(ClientManager):
    """Vector index selected by RAG_ENGINE (default "qdrant")."""

    client_type = "rag"
    package = "rag"
    class_prefix = "RAGClient"
    default_engine = "qdrant"
    expected_type = RAGClientInterface

    def get_client(self) -> RAGClientInterface:
        return self.client
