from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

import httpx
from httpx._types import QueryParamTypes, RequestContent
from shared.models.config import EnvConfig
from shared.models.errors import RAGAssistantError, StorageUnavailable

from shared.helper.HelperConfig import HelperConfig


class ClientInterface(ABC):
    """Base class of every HTTP backend client (embeddings, LLM, vector index, object storage).

    Subclasses name their client type and engine; configuration is then read
    from "{TYPE}_{ENGINE}_{KEY}" environment variables, and requests go through
    one shared httpx.AsyncClient created in boot().
    """

    # error types raised for unreachable backends and non-2xx answers
    transport_error_class: type[RAGAssistantError] = StorageUnavailable
    status_error_class: type[RAGAssistantError] = RAGAssistantError

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### IDENTITY #################
    ##########################################

    @abstractmethod
    def _get_client_type(self) -> str:
        """Kind of backend, e.g. "embed", "llm", "rag" or "storage"."""
        pass

    @abstractmethod
    def _get_engine_name(self) -> str:
        """Backend implementation, e.g. "ollama" or "qdrant"."""
        pass

    def get_client_type(self) -> str:
        return self._get_client_type().lower()

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    def _describe(self) -> str:
        return f"{self.get_client_type().upper()} backend '{self.get_engine_name()}'"

    ##########################################
    ################ CONFIG ##################
    ##########################################

    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """Engine-relative configuration keys, checked once at construction."""
        pass

    def validate_full_configuration(self) -> None:
        """
        Reads every key from _get_required_config() once so a misconfigured
        backend fails at startup instead of on the first request.

        Raises:
            ValueError: If a key without default is unset or a value cannot be parsed.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    def _get_config_key_name(self, raw_key: str) -> str:
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads an engine-scoped setting, e.g. raw_key "BASE_URL" of the Qdrant
        RAG client is looked up as RAG_QDRANT_BASE_URL.

        Args:
            raw_key (str): Key relative to the client prefix.
            default (Any): Fallback if unset. None makes the key mandatory.
            val_type (str): "string", "number", "bool" or "list".
        """
        readers: dict[str, Callable[..., Any]] = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
        }
        reader = readers.get(val_type)
        if reader is None:
            raise ValueError(f"Unknown value type '{val_type}' for setting '{raw_key}' of {self._describe()}.")
        return reader(self._get_config_key_name(raw_key), default=default)

    ##########################################
    ############### BACKEND ##################
    ##########################################

    @abstractmethod
    def _get_auth_header(self) -> dict:
        """Headers that authenticate against the backend; empty when no key is configured."""
        pass

    @abstractmethod
    def _get_base_url(self) -> str:
        """Root URL of the backend, e.g. "http://localhost:6333"."""
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        """Path answered with 2xx when the backend is up."""
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Create the HTTP client.

        Args:
            transport: Optional transport override, e.g. httpx.MockTransport in tests.
        """
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_healthcheck(self) -> httpx.Response:
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())

    def _build_request_kwargs(
        self,
        endpoint: str,
        content: RequestContent | None,
        json: dict | None,
        params: QueryParamTypes | None,
        additional_headers: dict | None,
    ) -> dict:
        if self._client is None:
            raise RuntimeError(f"{self._describe()} is not booted. Call boot() before making requests.")

        path = endpoint.strip().lstrip("/")
        url = self._get_base_url().rstrip("/") + (f"/{path}" if path else "")

        # no default Content-Type, httpx derives it from the body argument
        headers = {**self._get_auth_header(), **(additional_headers or {})}

        kwargs: dict = {"url": url, "headers": headers, "timeout": self.timeout, "params": params}
        if content is not None:
            kwargs["content"] = content
        elif json is not None:
            kwargs["json"] = json
        return kwargs

    def _raise_for_status(self, url: str, response: httpx.Response) -> None:
        if response.status_code < 300:
            return
        self.logging.error("%s answered %d for %s: %s", self._describe(), response.status_code, url, response.text[:200])
        raise self.status_error_class(f"Request to {url} failed with status {response.status_code}")

    def _unreachable(self, url: str, exc: httpx.TransportError) -> RAGAssistantError:
        self.logging.error("Request to %s failed: %s", url, exc)
        return self.transport_error_class(f"{self._describe()} is unreachable: {exc}")

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send a request to the backend.

        Args:
            method: HTTP method.
            content: Raw body; the caller passes its Content-Type in additional_headers.
            json: JSON body, used when content is None.
            params: URL query parameters.
            endpoint: Path below the base URL, leading slash optional.
            additional_headers: Extra headers, override the auth header.
            raise_on_error: Raise status_error_class on a non-2xx status.

        Raises:
            RuntimeError: If boot() was not called.
            RAGAssistantError: transport_error_class when the backend is unreachable,
                status_error_class on a non-2xx status (when raise_on_error is True).
        """
        kwargs = self._build_request_kwargs(endpoint, content, json, params, additional_headers)
        try:
            response = await self._client.request(method, **kwargs)
        except httpx.TransportError as exc:
            raise self._unreachable(kwargs["url"], exc) from exc

        if raise_on_error:
            self._raise_for_status(kwargs["url"], response)
        return response

    @asynccontextmanager
    async def do_stream_request(
        self,
        method: str = "POST",
        json: dict | None = None,
        endpoint: str = "",
    ) -> AsyncIterator[httpx.Response]:
        """Open a streaming request. The response is closed when the context exits,
        including on cancellation of the consuming task.

        Raises:
            RAGAssistantError: transport_error_class or status_error_class as in do_request().
        """
        kwargs = self._build_request_kwargs(endpoint, None, json, None, None)
        try:
            async with self._client.stream(method, **kwargs) as response:
                if response.status_code >= 300:
                    await response.aread()
                    self._raise_for_status(kwargs["url"], response)
                yield response
        except httpx.TransportError as exc:
            raise self._unreachable(kwargs["url"], exc) from exc
