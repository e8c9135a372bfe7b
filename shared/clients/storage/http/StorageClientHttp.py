from urllib.parse import quote

import httpx

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import ObjectNotFound, StorageUnavailable


class StorageClientHttp:
    """Object storage over plain HTTP verbs: PUT/GET/DELETE {base_url}/{bucket}/{key}.

    Authenticates with an optional bearer token, so it suits object gateways
    behind a token-checking proxy. S3 and S3-compatible stores need signed
    requests and use the "s3" engine instead.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._base_url = helper_config.get_string_val("STORAGE_HTTP_BASE_URL")
        self._bucket = helper_config.get_string_val("STORAGE_HTTP_BUCKET", default="rag-assistant-uploads")
        self._api_key = helper_config.get_string_val("STORAGE_HTTP_API_KEY", default="")
        self.timeout = helper_config.get_number_val("STORAGE_TIMEOUT", default=30.0)
        self._client: httpx.AsyncClient | None = None

    def get_engine_name(self) -> str:
        return "http"

    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    def _get_object_url(self, key: str) -> str:
        return f"{self._base_url.rstrip('/')}/{self._bucket}/{quote(key, safe='/')}"

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(timeout=self.timeout, headers=self._get_auth_header(), transport=transport)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    async def _send(self, method: str, key: str, content: bytes | None = None) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("HTTP client not initialised. Call boot() before making requests.")
        url = self._get_object_url(key)
        headers = {"Content-Type": "application/octet-stream"} if content is not None else None
        try:
            return await self._client.request(method, url, content=content, headers=headers)
        except httpx.TransportError as exc:
            self.logging.error("Object storage request %s %s failed: %s", method, url, exc)
            raise StorageUnavailable(f"Object storage is unreachable: {exc}") from exc

    async def put(self, key: str, data: bytes) -> None:
        response = await self._send("PUT", key, content=data)
        if not response.is_success:
            raise StorageUnavailable(f"Storing object '{key}' failed with status {response.status_code}.")

    async def get(self, key: str) -> bytes:
        response = await self._send("GET", key)
        if response.status_code == 404:
            raise ObjectNotFound(f"No object stored under '{key}'.")
        if not response.is_success:
            raise StorageUnavailable(f"Reading object '{key}' failed with status {response.status_code}.")
        return response.content

    async def delete(self, key: str) -> None:
        response = await self._send("DELETE", key)
        if response.status_code == 404:
            return
        if not response.is_success:
            raise StorageUnavailable(f"Deleting object '{key}' failed with status {response.status_code}.")
