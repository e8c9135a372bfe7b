"""Metadata store for documents and query history.

SQLAlchemy with a synchronous engine; every public coroutine runs its session
work in a worker thread so database I/O never blocks the event loop. The
unique (owner_id, content_hash) constraint, not application locking, is what
keeps concurrent uploads of the same content from creating two documents.
"""

import asyncio
import os
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.helper.HelperConfig import HelperConfig
from shared.models.document import Document
from shared.models.errors import DuplicateContentError, PersistenceError
from shared.models.query import QueryRecord
from shared.store.models import Base, DocumentRow, QueryHistoryRow

T = TypeVar("T")


class MetadataStore:
    """Documents table and query history behind a small async API."""

    def __init__(self, helper_config: HelperConfig, database_url: str | None = None) -> None:
        self.logging = helper_config.get_logger()
        self._database_url = database_url or helper_config.get_string_val(
            "DATABASE_URL", default="sqlite:///./data/rag_assistant.db"
        )
        self._engine = self._create_engine(self._database_url)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

    @staticmethod
    def _create_engine(database_url: str):
        url = make_url(database_url)
        if url.get_backend_name() != "sqlite":
            return create_engine(database_url, pool_pre_ping=True)
        if url.database in (None, "", ":memory:"):
            # one shared connection, otherwise every worker thread sees its own empty database
            return create_engine(database_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        directory = os.path.dirname(os.path.abspath(url.database))
        os.makedirs(directory, exist_ok=True)
        return create_engine(database_url, connect_args={"check_same_thread": False})

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        """Create the tables if they do not exist yet."""
        try:
            await asyncio.to_thread(Base.metadata.create_all, bind=self._engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not initialise the metadata store: {exc}") from exc

    async def close(self) -> None:
        await asyncio.to_thread(self._engine.dispose)

    async def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run work(session) in a worker thread, translating database errors."""

        def _in_session() -> T:
            with self._session_factory() as session:
                try:
                    result = work(session)
                    session.commit()
                    return result
                except Exception:
                    session.rollback()
                    raise

        try:
            return await asyncio.to_thread(_in_session)
        except (DuplicateContentError, PersistenceError):
            raise
        except SQLAlchemyError as exc:
            self.logging.error("Metadata store %s failed: %s", operation, exc)
            raise PersistenceError(f"Metadata store {operation} failed: {exc}") from exc

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    async def do_get_document_by_hash(self, owner_id: str, content_hash: str) -> Document | None:
        def work(session: Session) -> Document | None:
            row = session.query(DocumentRow).filter_by(owner_id=owner_id, content_hash=content_hash).one_or_none()
            return Document.model_validate(row) if row else None

        return await self._run("lookup by hash", work)

    async def do_get_document(self, owner_id: str, document_id: str) -> Document | None:
        """Return the owner's document, or None. Documents of other owners are never returned."""

        def work(session: Session) -> Document | None:
            row = session.query(DocumentRow).filter_by(owner_id=owner_id, id=document_id).one_or_none()
            return Document.model_validate(row) if row else None

        return await self._run("lookup", work)

    async def do_list_documents(self, owner_id: str) -> list[Document]:
        def work(session: Session) -> list[Document]:
            rows = (
                session.query(DocumentRow)
                .filter_by(owner_id=owner_id)
                .order_by(DocumentRow.created_at.desc())
                .all()
            )
            return [Document.model_validate(row) for row in rows]

        return await self._run("list", work)

    async def do_insert_document(self, document: Document) -> Document:
        """Insert a document row.

        Raises:
            DuplicateContentError: If the owner already has a document with the same hash.
            PersistenceError: On any other database failure.
        """

        def work(session: Session) -> Document:
            session.add(DocumentRow(**document.model_dump()))
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateContentError(document.owner_id, document.content_hash) from exc
            return document

        return await self._run("insert", work)

    async def do_delete_document(self, owner_id: str, document_id: str) -> bool:
        """Delete the row. Returns False if there was nothing to delete."""

        def work(session: Session) -> bool:
            deleted = session.query(DocumentRow).filter_by(owner_id=owner_id, id=document_id).delete()
            return deleted > 0

        return await self._run("delete", work)

    async def do_update_chunk_count(self, owner_id: str, document_id: str, chunk_count: int) -> None:
        def work(session: Session) -> None:
            session.query(DocumentRow).filter_by(owner_id=owner_id, id=document_id).update(
                {DocumentRow.chunk_count: chunk_count}
            )

        await self._run("chunk count update", work)

    ##########################################
    ############# QUERY HISTORY ##############
    ##########################################

    async def do_insert_query_record(self, record: QueryRecord) -> None:
        def work(session: Session) -> None:
            session.add(QueryHistoryRow(
                id=record.id,
                owner_id=record.owner_id,
                question=record.question,
                answer=record.answer,
                sources=[source.model_dump() for source in record.sources],
                created_at=record.created_at,
            ))

        await self._run("query history insert", work)

    async def do_list_query_history(self, owner_id: str, limit: int = 50) -> list[QueryRecord]:
        def work(session: Session) -> list[QueryRecord]:
            rows = (
                session.query(QueryHistoryRow)
                .filter_by(owner_id=owner_id)
                .order_by(QueryHistoryRow.created_at.desc())
                .limit(limit)
                .all()
            )
            return [QueryRecord.model_validate(row) for row in rows]

        return await self._run("query history list", work)
