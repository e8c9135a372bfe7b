"""Document ingestion service.

Turns an uploaded file into searchable, citable chunks: validate, hash,
deduplicate, extract, chunk, embed, then persist to object storage, the
metadata store and the owner's vector collection.

Persistence has no transaction spanning the three backends. Each completed
step registers its undo action; if a later step fails (or the task is
cancelled) the completed steps are undone in reverse order so no document is
left without retrievable chunks.
"""

import asyncio
import hashlib
import os
import uuid
from datetime import datetime, timezone

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import VectorPoint, VectorRecord, make_point_id
from shared.clients.storage.ObjectStorage import ObjectStorage, make_storage_key, validate_owner_id
from shared.helper.HelperChunker import TextChunk, chunk_pages
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperExtract import extract_pages
from shared.models.document import Document, IngestResult
from shared.models.errors import DocumentNotFound, DuplicateContentError, ValidationError, VectorIndexError
from shared.store.MetadataStore import MetadataStore

DEFAULT_ALLOWED_EXTENSIONS = [".pdf", ".txt", ".md", ".json", ".csv"]
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB
DEFAULT_CHUNK_SIZE = 500     # characters per text chunk
DEFAULT_CHUNK_OVERLAP = 50   # character overlap between consecutive chunks

# undo step names, in the order they are completed
_STEP_OBJECT = "object"
_STEP_METADATA = "metadata"
_STEP_VECTORS = "vectors"


class IngestionService:
    """Orchestrates ingestion and deletion of documents for one owner at a time."""

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        storage: ObjectStorage,
        metadata_store: MetadataStore,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._storage = storage
        self._store = metadata_store

        self.allowed_extensions = {
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in helper_config.get_list_val("INGEST_ALLOWED_EXTENSIONS", default=DEFAULT_ALLOWED_EXTENSIONS)
        }
        self.max_file_size = int(helper_config.get_number_val("INGEST_MAX_FILE_SIZE", default=DEFAULT_MAX_FILE_SIZE))
        self.chunk_size = int(helper_config.get_number_val("CHUNK_SIZE", default=DEFAULT_CHUNK_SIZE))
        self.chunk_overlap = int(helper_config.get_number_val("CHUNK_OVERLAP", default=DEFAULT_CHUNK_OVERLAP))
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("CHUNK_OVERLAP must be smaller than CHUNK_SIZE.")

    ##########################################
    ############### VALIDATION ###############
    ##########################################

    @staticmethod
    def get_file_type(filename: str) -> str:
        """Lower-case extension including the dot, e.g. ".pdf"."""
        return os.path.splitext(filename)[1].lower()

    def is_allowed(self, filename: str) -> bool:
        return self.get_file_type(filename) in self.allowed_extensions

    def validate_upload(self, owner_id: str, filename: str, size: int) -> tuple[str, str]:
        """Check an upload before any I/O happens.

        Args:
            owner_id (str): The uploading owner.
            filename (str): Client-supplied filename; directory parts are dropped.
            size (int): Size of the content in bytes.

        Returns:
            tuple[str, str]: The sanitised filename and its file type.

        Raises:
            ValidationError: On a missing or unsafe owner id, a missing filename,
                a disallowed extension, or an empty or oversized file.
        """
        validate_owner_id(owner_id)
        safe_name = os.path.basename((filename or "").replace("\\", "/")).strip()
        if not safe_name or safe_name in (".", ".."):
            raise ValidationError("Filename is required.")
        file_type = self.get_file_type(safe_name)
        if file_type not in self.allowed_extensions:
            raise ValidationError(
                f"Unsupported file type '{file_type or safe_name}'. Allowed: {', '.join(sorted(self.allowed_extensions))}."
            )
        if size <= 0:
            raise ValidationError("File is empty.")
        if size > self.max_file_size:
            raise ValidationError(f"File too large ({size} bytes, max {self.max_file_size}).")
        return safe_name, file_type

    ##########################################
    ############### INGESTION ################
    ##########################################

    async def do_ingest(self, owner_id: str, data: bytes, filename: str) -> IngestResult:
        """Ingest one file for an owner.

        Args:
            owner_id (str): The uploading owner.
            data (bytes): Raw file content.
            filename (str): Original filename.

        Returns:
            IngestResult: The new document, or the existing one with duplicate=True
                if the owner already uploaded identical bytes.

        Raises:
            ValidationError: Bad upload or no extractable text; nothing was written.
            EmbeddingError: Embedding failed; nothing was written.
            PersistenceError, StorageUnavailable, VectorIndexError: A persistence
                step failed; completed steps were undone.
        """
        owner_id = validate_owner_id(owner_id)
        filename, file_type = self.validate_upload(owner_id, filename, len(data))
        content_hash = hashlib.sha256(data).hexdigest()

        existing = await self._store.do_get_document_by_hash(owner_id, content_hash)
        if existing:
            self.logging.info(
                "Skipping '%s' for owner '%s': identical content already stored as document %s.",
                filename, owner_id, existing.id, color="yellow",
            )
            return IngestResult(document=existing, duplicate=True)

        chunks = await self._prepare_chunks(data, file_type, filename)
        try:
            vectors = await self._embed_client.do_embed([chunk.text for chunk in chunks])
        except Exception as exc:
            self.logging.error("Embedding failed for '%s' (owner '%s'): %s", filename, owner_id, exc)
            raise

        document = Document(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            filename=filename,
            file_type=file_type,
            file_size=len(data),
            content_hash=content_hash,
            storage_key=make_storage_key(owner_id, content_hash, filename),
            chunk_count=len(chunks),
            created_at=datetime.now(timezone.utc),
        )
        result = await self._persist(document, data, chunks, vectors)
        if not result.duplicate:
            self.logging.info(
                "Indexed '%s' for owner '%s' as document %s: %d chunks.",
                filename, owner_id, document.id, document.chunk_count, color="green",
            )
        return result

    async def do_ingest_local_file(self, owner_id: str, path: str) -> IngestResult:
        """Ingest a file from the local filesystem. Name and size are validated before reading."""
        filename = os.path.basename(path)
        size = (await asyncio.to_thread(os.stat, path)).st_size
        self.validate_upload(owner_id, filename, size)
        data = await asyncio.to_thread(self._read_file, path)
        return await self.do_ingest(owner_id, data, filename)

    @staticmethod
    def _read_file(path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    async def _prepare_chunks(self, data: bytes, file_type: str, filename: str) -> list[TextChunk]:
        """Extract and chunk text. Extraction is CPU-bound and runs in a worker thread.

        Raises:
            ValidationError: If the file contains no text.
        """
        pages = await asyncio.to_thread(extract_pages, data, file_type)
        chunks = chunk_pages(pages, self.chunk_size, self.chunk_overlap)
        if not chunks:
            raise ValidationError(f"No text content found in '{filename}'.")
        return chunks

    @staticmethod
    def _build_records(document: Document, chunks: list[TextChunk], vectors: list[list[float]]) -> list[VectorRecord]:
        records: list[VectorRecord] = []
        for chunk, vector in zip(chunks, vectors):
            records.append(VectorRecord(
                id=make_point_id(document.id, chunk.index),
                vector=vector,
                payload=VectorPoint(
                    document_id=document.id,
                    owner_id=document.owner_id,
                    filename=document.filename,
                    file_type=document.file_type,
                    chunk_index=chunk.index,
                    text=chunk.text,
                    page=chunk.page,
                    offset=chunk.start,
                ),
            ))
        return records

    ##########################################
    ############## PERSISTENCE ###############
    ##########################################

    async def _persist(
        self,
        document: Document,
        data: bytes,
        chunks: list[TextChunk],
        vectors: list[list[float]],
    ) -> IngestResult:
        """Write object, metadata row and vectors; undo completed steps on failure."""
        owner_id = document.owner_id
        completed: list[str] = []
        try:
            await self._storage.put(document.storage_key, data)
            completed.append(_STEP_OBJECT)

            try:
                await self._store.do_insert_document(document)
            except DuplicateContentError:
                # a concurrent upload of the same bytes won the race
                winner = await self._store.do_get_document_by_hash(owner_id, document.content_hash)
                if winner is None:
                    raise
                if winner.storage_key == document.storage_key:
                    # same filename: the object just written is the winner's object
                    completed.remove(_STEP_OBJECT)
                else:
                    await self._compensate(document, completed)
                self.logging.info("Concurrent upload of '%s' resolved to document %s.", document.filename, winner.id)
                return IngestResult(document=winner, duplicate=True)
            completed.append(_STEP_METADATA)

            await self._rag_client.do_ensure_collection(owner_id, self._embed_client.get_dimensions())
            records = self._build_records(document, chunks, vectors)
            # registered before the upsert: a failed batch may already have written earlier batches
            completed.append(_STEP_VECTORS)
            await self._rag_client.do_upsert_points(owner_id, records)
            await self._verify_indexed(document, records)
        except (Exception, asyncio.CancelledError) as exc:
            self.logging.error(
                "Persisting document %s ('%s') failed after steps %s: %s",
                document.id, document.filename, completed or "none", exc,
            )
            await self._compensate(document, completed)
            raise
        return IngestResult(document=document, duplicate=False)

    async def _verify_indexed(self, document: Document, records: list[VectorRecord]) -> None:
        """Make sure the index holds exactly chunk_count points for the document.

        One re-upsert is attempted on a mismatch.

        Raises:
            VectorIndexError: If the count still does not match.
        """
        indexed = await self._rag_client.do_count_by_document(document.owner_id, document.id)
        if indexed == document.chunk_count:
            return
        self.logging.warning(
            "Document %s has %d of %d chunks indexed. Retrying upsert.",
            document.id, indexed, document.chunk_count,
        )
        await self._rag_client.do_upsert_points(document.owner_id, records)
        indexed = await self._rag_client.do_count_by_document(document.owner_id, document.id)
        if indexed != document.chunk_count:
            raise VectorIndexError(
                f"Document {document.id} has {indexed} of {document.chunk_count} chunks indexed after retry."
            )

    async def _compensate(self, document: Document, completed: list[str]) -> None:
        """Undo completed steps in reverse order. Failures here are logged, never raised,
        so the error that triggered compensation is the one the caller sees.
        """
        for step in reversed(completed):
            try:
                if step == _STEP_VECTORS:
                    await self._rag_client.do_delete_by_document(document.owner_id, document.id)
                elif step == _STEP_METADATA:
                    await self._store.do_delete_document(document.owner_id, document.id)
                elif step == _STEP_OBJECT:
                    await self._storage.delete(document.storage_key)
                self.logging.info("Rolled back %s of document %s.", step, document.id)
            except Exception as exc:
                self.logging.error(
                    "Rollback of %s for document %s failed, manual cleanup needed: %s",
                    step, document.id, exc,
                )

    ##########################################
    ################ QUERIES #################
    ##########################################

    async def do_list(self, owner_id: str) -> list[Document]:
        return await self._store.do_list_documents(owner_id)

    async def do_get(self, owner_id: str, document_id: str) -> Document:
        """
        Raises:
            DocumentNotFound: If the owner has no such document.
        """
        document = await self._store.do_get_document(owner_id, document_id)
        if document is None:
            raise DocumentNotFound(f"Document {document_id} not found.")
        return document

    async def do_download(self, owner_id: str, document_id: str) -> tuple[Document, bytes]:
        """Return the document and its original bytes from object storage."""
        document = await self.do_get(owner_id, document_id)
        return document, await self._storage.get(document.storage_key)

    ##########################################
    ################ DELETION ################
    ##########################################

    async def do_delete(self, owner_id: str, document_id: str) -> None:
        """Delete a document: vectors first, then the object, then the metadata row.

        Vectors go first so a failure midway never leaves points that cite a
        document which no longer exists. Every step tolerates already-missing data,
        so a failed delete can simply be repeated.

        Raises:
            DocumentNotFound: If the owner has no such document.
        """
        document = await self.do_get(owner_id, document_id)
        await self._rag_client.do_delete_by_document(owner_id, document.id)
        await self._storage.delete(document.storage_key)
        await self._store.do_delete_document(owner_id, document.id)
        self.logging.info("Deleted document %s ('%s') of owner '%s'.", document.id, document.filename, owner_id)

    ##########################################
    ################# REPAIR #################
    ##########################################

    async def do_repair(self, owner_id: str, document_id: str) -> bool:
        """Re-index a document whose indexed chunk count differs from its stored chunk count.

        The document is rebuilt from its stored original, so this also recovers
        documents orphaned by a crash between persistence steps.

        Returns:
            bool: True if the document was re-indexed, False if it was intact.
        """
        document = await self.do_get(owner_id, document_id)
        indexed = await self._rag_client.do_count_by_document(owner_id, document.id)
        if indexed == document.chunk_count:
            return False

        self.logging.warning(
            "Document %s ('%s') has %d of %d chunks indexed. Re-indexing from storage.",
            document.id, document.filename, indexed, document.chunk_count,
        )
        data = await self._storage.get(document.storage_key)
        chunks = await self._prepare_chunks(data, document.file_type, document.filename)
        if len(chunks) != document.chunk_count:
            # chunking settings changed since the original upload
            await self._store.do_update_chunk_count(owner_id, document.id, len(chunks))
            document = document.model_copy(update={"chunk_count": len(chunks)})
        vectors = await self._embed_client.do_embed([chunk.text for chunk in chunks])
        records = self._build_records(document, chunks, vectors)

        await self._rag_client.do_delete_by_document(owner_id, document.id)
        await self._rag_client.do_ensure_collection(owner_id, self._embed_client.get_dimensions())
        await self._rag_client.do_upsert_points(owner_id, records)
        await self._verify_indexed(document, records)
        self.logging.info("Re-indexed document %s with %d chunks.", document.id, len(records), color="green")
        return True

    async def do_reconcile(self, owner_id: str) -> list[str]:
        """Run do_repair() over all of the owner's documents.

        Failures are logged and do not stop the run.

        Returns:
            list[str]: IDs of the documents that were re-indexed.
        """
        repaired: list[str] = []
        for document in await self.do_list(owner_id):
            try:
                if await self.do_repair(owner_id, document.id):
                    repaired.append(document.id)
            except Exception as exc:
                self.logging.error("Repair of document %s failed: %s", document.id, exc)
        self.logging.info("Reconcile for owner '%s': %d document(s) re-indexed.", owner_id, len(repaired))
        return repaired
