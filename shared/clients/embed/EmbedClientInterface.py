import asyncio
from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import EmbeddingError

# Output dimensionality of the embedding models we know about.
# Anything else must be configured explicitly via EMBED_DIMENSIONS.
KNOWN_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "bge-m3": 1024,
}


class EmbedClientInterface(ClientInterface):
    transport_error_class = EmbeddingError
    status_error_class = EmbeddingError

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_distance = helper_config.get_string_val("EMBED_DISTANCE", default="Cosine")
        self.embed_model = helper_config.get_string_val("EMBED_MODEL", default=self._get_default_model())
        self.batch_size = int(helper_config.get_number_val("EMBED_BATCH_SIZE", default=100))
        self.max_retries = int(helper_config.get_number_val("EMBED_MAX_RETRIES", default=3))
        self.retry_base_delay = float(helper_config.get_number_val("EMBED_RETRY_BASE_DELAY", default=1.0))
        if self.batch_size < 1:
            raise ValueError("EMBED_BATCH_SIZE must be at least 1.")
        self._dimensions = self._resolve_dimensions(helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "embed"

    @abstractmethod
    def _get_default_model(self) -> str:
        """
        Returns the model used when EMBED_MODEL is not set. E.g. "text-embedding-3-small"
        """
        pass

    def _resolve_dimensions(self, helper_config: HelperConfig) -> int:
        """Resolve the vector size of the configured model.

        EMBED_DIMENSIONS wins over the built-in table so custom or fine-tuned
        models can be used.

        Raises:
            ValueError: If the model is unknown and EMBED_DIMENSIONS is not set.
        """
        configured = helper_config.get_number_val("EMBED_DIMENSIONS", default=0)
        if configured:
            return int(configured)
        if self.embed_model in KNOWN_MODEL_DIMENSIONS:
            return KNOWN_MODEL_DIMENSIONS[self.embed_model]
        raise ValueError(
            f"Unknown embedding dimensionality for model '{self.embed_model}'. Set EMBED_DIMENSIONS."
        )

    def get_dimensions(self) -> int:
        """
        Returns the fixed output dimensionality of the configured embedding model.
        """
        return self._dimensions

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests (e.g. "/embeddings").
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts of one batch.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_indexed_embeddings(self, response_data: dict) -> list[tuple[int, list[float]]]:
        """Extract (input index, vector) pairs from a raw embedding API response.

        Response format differs by backend:
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]}, possibly unordered
        - Ollama /api/embed: {"embeddings": [[...], [...]]}, positional

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[tuple[int, list[float]]]: Pairs in response order.

        Raises:
            EmbeddingError: If the response does not have the expected shape.
        """
        pass

    def _reassemble(self, pairs: list[tuple[int, list[float]]], expected: int) -> list[list[float]]:
        """Order vectors by their declared index and validate the batch is complete.

        Raises:
            EmbeddingError: On missing, duplicate or out-of-range indices, on
                vectors that are not lists of numbers, or on vectors that do not
                match the model dimensionality.
        """
        ordered: list[list[float] | None] = [None] * expected
        for index, vector in pairs:
            if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < expected:
                raise EmbeddingError(f"Embedding response contains out-of-range index {index!r} (batch size {expected}).")
            if ordered[index] is not None:
                raise EmbeddingError(f"Embedding response contains duplicate index {index}.")
            if not isinstance(vector, list) or not all(
                isinstance(value, (int, float)) and not isinstance(value, bool) for value in vector
            ):
                raise EmbeddingError(f"Embedding at index {index} is not a list of numbers.")
            if len(vector) != self._dimensions:
                raise EmbeddingError(
                    f"Embedding at index {index} has dimension {len(vector)}, expected {self._dimensions}."
                )
            ordered[index] = vector
        missing = [i for i, vector in enumerate(ordered) if vector is None]
        if missing:
            raise EmbeddingError(f"Embedding response is missing indices {missing[:10]}.")
        return ordered

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Embed texts in fixed-size batches and return one vector per input, in input order.

        Args:
            texts (list[str] | str): One or more texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            EmbeddingError: If the input is empty, a batch fails or retries are exhausted.
        """
        texts = [texts] if isinstance(texts, str) else list(texts)
        if not texts:
            raise EmbeddingError("Cannot embed an empty list of texts.")

        vectors: list[list[float]] = []
        for batch_start in range(0, len(texts), self.batch_size):
            batch = texts[batch_start: batch_start + self.batch_size]
            vectors.extend(await self._do_embed_batch(batch))
        self.logging.debug("Embedded %d text(s) with model '%s'.", len(texts), self.embed_model)
        return vectors

    async def do_embed_one(self, text: str) -> list[float]:
        """Embed a single text as a one-item batch."""
        return (await self.do_embed([text]))[0]

    async def _do_embed_batch(self, batch: list[str]) -> list[list[float]]:
        """Send one batch, retrying with exponential backoff on HTTP 429 only."""
        body = self.get_embed_payload(batch)
        attempt = 0
        while True:
            response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
            if response.status_code == 429:
                if attempt >= self.max_retries:
                    self.logging.error("Embedding rate limit persisted after %d retries.", self.max_retries)
                    raise EmbeddingError(f"Embedding API rate limit: giving up after {self.max_retries} retries.")
                delay = self.retry_base_delay * (2 ** attempt)
                attempt += 1
                self.logging.warning(
                    "Embedding API rate limited, retry %d/%d in %.1fs.", attempt, self.max_retries, delay
                )
                await asyncio.sleep(delay)
                continue

            if not response.is_success:
                self.logging.error(
                    "Embedding request failed: status %d, body: %s",
                    response.status_code,
                    response.text[:200],
                )
                raise EmbeddingError("Embedding request failed with status %d." % response.status_code)

            try:
                response_data = response.json()
            except ValueError as exc:
                raise EmbeddingError("Embedding response is not valid JSON.") from exc
            return self._reassemble(self.extract_indexed_embeddings(response_data), len(batch))
