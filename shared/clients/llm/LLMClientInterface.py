from abc import abstractmethod
from typing import AsyncIterator

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import CompletionError


class LLMClientInterface(ClientInterface):
    transport_error_class = CompletionError
    status_error_class = CompletionError

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # chat / completion config
        self.chat_model = helper_config.get_string_val("LLM_CHAT_MODEL", default=self._get_default_model())
        self.temperature = float(helper_config.get_number_val("LLM_TEMPERATURE", default=0.2))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    @abstractmethod
    def _get_default_model(self) -> str:
        """Returns the chat model used when LLM_CHAT_MODEL is not set."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/chat/completions")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[dict], stream: bool = False) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            messages (list[dict]): OpenAI-format messages
                (e.g. [{"role": "user", "content": "..."}]).
            stream (bool): Request an incremental response.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a raw chat API response.

        Raises:
            CompletionError: If the response does not contain a reply.
        """
        pass

    @abstractmethod
    def extract_stream_delta(self, line: str) -> tuple[str | None, bool]:
        """Parse one line of a streamed chat response.

        Args:
            line (str): A single non-empty line from the response body.

        Returns:
            tuple[str | None, bool]: The text fragment carried by the line (None if
                the line carries none) and whether the stream is finished.

        Raises:
            CompletionError: If the line cannot be parsed.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat(self, messages: list[dict]) -> str:
        """Send a chat/completion request and return the assistant reply text.

        Args:
            messages (list[dict]): OpenAI-format messages.

        Returns:
            str: The assistant reply text, verbatim.

        Raises:
            CompletionError: If the backend is unreachable, answers with a non-2xx
                status or returns no reply.
        """
        body = self.get_chat_payload(messages)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(),
            json=body,
            raise_on_error=True,
        )
        try:
            response_data = response.json()
        except ValueError as exc:
            raise CompletionError("Chat response is not valid JSON.") from exc
        return self.extract_chat_response(response_data)

    async def do_chat_stream(self, messages: list[dict]) -> AsyncIterator[str]:
        """Stream a chat/completion and yield text fragments in order.

        Closing the generator (or cancelling the consuming task) closes the
        underlying HTTP response, which aborts generation upstream.

        Raises:
            CompletionError: As in do_chat(), or if the stream ends without a
                completion marker.
        """
        body = self.get_chat_payload(messages, stream=True)
        async with self.do_stream_request(method="POST", endpoint=self._get_endpoint_chat(), json=body) as response:
            async for line in response.aiter_lines():
                line = line.strip()
                if not line:
                    continue
                delta, done = self.extract_stream_delta(line)
                if delta:
                    yield delta
                if done:
                    return
        raise CompletionError("Chat stream ended before the completion finished.")
