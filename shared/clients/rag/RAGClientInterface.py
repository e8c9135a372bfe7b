from abc import abstractmethod
import hashlib
import re

import httpx
from pydantic import ValidationError as PayloadValidationError

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.VectorPoint import SearchHit, VectorPoint, VectorRecord
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import StorageUnavailable, VectorIndexError

_UNSAFE_COLLECTION_CHARS = re.compile(r"[^a-z0-9_-]")


class RAGClientInterface(ClientInterface):
    """Vector index client. Every owner gets an isolated collection of their own;
    no operation ever reaches into another owner's collection.
    """

    transport_error_class = StorageUnavailable
    status_error_class = VectorIndexError

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.upsert_batch_size = int(helper_config.get_number_val("RAG_UPSERT_BATCH_SIZE", default=100))
        self.distance = helper_config.get_string_val("EMBED_DISTANCE", default="Cosine")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "rag"

    @abstractmethod
    def _get_collection_prefix(self) -> str:
        """
        Returns the prefix shared by all owner collections. E.g. "documents"
        """
        pass

    def get_collection_name(self, owner_id: str) -> str:
        """
        Returns the collection name of an owner, e.g. "documents_alice".

        Characters the index does not accept are replaced; if the owner id had
        to be changed a short hash of the original is appended, so two distinct
        owners can never share a collection.

        Raises:
            ValueError: If owner_id is empty.
        """
        raw = str(owner_id or "").strip()
        if not raw:
            raise ValueError("owner_id must not be empty.")
        safe = _UNSAFE_COLLECTION_CHARS.sub("_", raw.lower())
        if safe != raw:
            safe = f"{safe}_{hashlib.sha1(raw.encode('utf-8')).hexdigest()[:8]}"
        return f"{self._get_collection_prefix()}_{safe}"

    ################ ENDPOINTS ##################
    # all paths are relative to the base URL and scoped to one collection

    @abstractmethod
    def _get_endpoint_collection(self, collection: str) -> str:
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        pass

    @abstractmethod
    def _get_endpoint_payload_index(self, collection: str) -> str:
        pass

    @abstractmethod
    def _get_endpoint_points(self, collection: str) -> str:
        """Upsert path; points with an existing ID are overwritten."""
        pass

    @abstractmethod
    def _get_endpoint_search(self, collection: str) -> str:
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self, collection: str) -> str:
        """Delete-by-filter path."""
        pass

    @abstractmethod
    def _get_endpoint_count(self, collection: str) -> str:
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        """Builds the request body for collection creation."""
        pass

    @abstractmethod
    def get_payload_index_payload(self, field_name: str) -> dict:
        """Builds the request body for a keyword index on a payload field."""
        pass

    @abstractmethod
    def get_upsert_payload(self, records: list[VectorRecord]) -> dict:
        """Builds the request body for a points upsert."""
        pass

    @abstractmethod
    def get_search_payload(self, vector: list[float], limit: int) -> dict:
        """Builds the request body for a similarity search returning full payloads."""
        pass

    @abstractmethod
    def get_document_filter(self, document_id: str) -> dict:
        """Builds the filter matching all points of one document."""
        pass

    @abstractmethod
    def get_count_payload(self, filter: dict) -> dict:
        """Builds the request body for an exact point count."""
        pass

    @abstractmethod
    def get_delete_payload(self, filter: dict) -> dict:
        """Builds the request body for a filter-based delete."""
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_exists(self, raw_response: dict) -> bool:
        pass

    @abstractmethod
    def extract_search_results(self, raw_response: dict) -> list[dict]:
        """Returns raw hits as dicts with keys "id", "score", "payload"."""
        pass

    @abstractmethod
    def extract_count(self, raw_response: dict) -> int:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_collection_exists(self, owner_id: str) -> bool:
        """Check whether the owner's collection exists."""
        collection = self.get_collection_name(owner_id)
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_check_collection_existence(collection),
            raise_on_error=True,
        )
        return self.extract_exists(resp.json())

    async def do_ensure_collection(self, owner_id: str, vector_size: int) -> None:
        """Create the owner's collection if it does not exist yet. Idempotent.

        A concurrent creator winning the race (HTTP 409) counts as success.

        Args:
            owner_id (str): The collection owner.
            vector_size (int): Dimensionality of the vectors stored in the collection.

        Raises:
            VectorIndexError: If creation fails.
            StorageUnavailable: If the index cannot be reached.
        """
        if await self.do_collection_exists(owner_id):
            return
        collection = self.get_collection_name(owner_id)
        resp = await self.do_request(
            method="PUT",
            json=self.get_create_collection_payload(vector_size, self.distance),
            endpoint=self._get_endpoint_collection(collection),
        )
        if resp.status_code == 409:
            self.logging.debug("Collection '%s' was created concurrently.", collection)
            return
        if not resp.is_success:
            self.logging.error("Creating collection '%s' failed with status %d: %s", collection, resp.status_code, resp.text[:200])
            raise VectorIndexError(f"Could not create collection '{collection}' (status {resp.status_code}).")

        await self.do_request(
            method="PUT",
            json=self.get_payload_index_payload("document_id"),
            endpoint=self._get_endpoint_payload_index(collection),
            params={"wait": "true"},
            raise_on_error=True,
        )
        self.logging.info("Created collection '%s' (%d dims, %s).", collection, vector_size, self.distance)

    async def do_upsert_points(self, owner_id: str, records: list[VectorRecord]) -> None:
        """Write or overwrite points by ID, in batches. Safe to repeat with the same records.

        Raises:
            ValueError: If a record belongs to a different owner.
            VectorIndexError: If the index rejects a batch.
            StorageUnavailable: If the index cannot be reached.
        """
        foreign = [r.id for r in records if r.payload.owner_id != owner_id]
        if foreign:
            raise ValueError(f"Refusing to upsert {len(foreign)} point(s) of another owner into '{owner_id}'.")
        collection = self.get_collection_name(owner_id)
        for batch_start in range(0, len(records), self.upsert_batch_size):
            batch = records[batch_start: batch_start + self.upsert_batch_size]
            await self.do_request(
                method="PUT",
                json=self.get_upsert_payload(batch),
                endpoint=self._get_endpoint_points(collection),
                params={"wait": "true"},
                raise_on_error=True,
            )

    async def do_search(self, owner_id: str, vector: list[float], limit: int) -> list[SearchHit]:
        """Similarity search in the owner's collection.

        Returns:
            list[SearchHit]: Up to `limit` hits by descending score. Empty when the
                owner has no collection yet.

        Raises:
            VectorIndexError: If the search fails or a stored payload is invalid.
            StorageUnavailable: If the index cannot be reached.
        """
        collection = self.get_collection_name(owner_id)
        resp = await self.do_request(
            method="POST",
            json=self.get_search_payload(vector, limit),
            endpoint=self._get_endpoint_search(collection),
        )
        if resp.status_code == 404:
            return []
        self._raise_for_status(self._get_endpoint_search(collection), resp)

        hits: list[SearchHit] = []
        for raw_hit in self.extract_search_results(resp.json()):
            try:
                hits.append(SearchHit(
                    id=str(raw_hit.get("id")),
                    score=float(raw_hit.get("score", 0.0)),
                    payload=VectorPoint.model_validate(raw_hit.get("payload") or {}),
                ))
            except PayloadValidationError as exc:
                raise VectorIndexError(f"Point {raw_hit.get('id')} in '{collection}' has an invalid payload: {exc}") from exc
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    async def do_delete_by_document(self, owner_id: str, document_id: str) -> None:
        """Delete all points of one document from the owner's collection.
        A missing collection is not an error.
        """
        collection = self.get_collection_name(owner_id)
        resp = await self.do_request(
            method="POST",
            json=self.get_delete_payload(self.get_document_filter(document_id)),
            endpoint=self._get_endpoint_delete_points(collection),
            params={"wait": "true"},
        )
        if resp.status_code == 404:
            return
        self._raise_for_status(self._get_endpoint_delete_points(collection), resp)

    async def do_count_by_document(self, owner_id: str, document_id: str) -> int:
        """Exact number of points stored for one document (0 without a collection)."""
        collection = self.get_collection_name(owner_id)
        resp: httpx.Response = await self.do_request(
            method="POST",
            json=self.get_count_payload(self.get_document_filter(document_id)),
            endpoint=self._get_endpoint_count(collection),
        )
        if resp.status_code == 404:
            return 0
        self._raise_for_status(self._get_endpoint_count(collection), resp)
        return self.extract_count(resp.json())
