from shared.clients.ClientManager import ClientManager
from shared.clients.storage.ObjectStorage import ObjectStorage


class StorageClientManager(ClientManager):
    """Object storage selected by STORAGE_ENGINE ("local" or "http")."""

    client_type = "storage"
    package = "storage"
    class_prefix = "StorageClient"
    default_engine = "local"
    expected_type = ObjectStorage

    def get_client(self) -> ObjectStorage:
        return self.client
