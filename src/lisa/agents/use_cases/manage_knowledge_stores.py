"""Knowledge store management use cases: create and delete."""

import asyncio
import logging
from typing import Optional, Sequence

from ...core.exceptions import ConflictError, NotFoundError, ValidationError
from ..domain.entities import (
    DeleteResult,
    DocumentBatchResult,
    DocumentUpload,
    KnowledgeStore,
)
from ..domain.ports import IAgentRepository
from .manage_assistants import delete_remote_best_effort
from .manage_documents import DocumentIngestor

logger = logging.getLogger(__name__)


class CreateKnowledgeStoreUseCase:
    """Create a shared knowledge store and fill it with documents."""

    def __init__(self, agent_repo: IAgentRepository, ingestor: DocumentIngestor):
        self.repo = agent_repo
        self.ingestor = ingestor

    async def execute(
        self,
        name: str,
        description: str = "",
        documents: Optional[Sequence[DocumentUpload]] = None,
    ) -> tuple[KnowledgeStore, DocumentBatchResult]:
        """
        Raises:
            ValidationError: If name is blank
            RemoteProviderError: If the remote store cannot be created

        Once the remote store exists, any later failure (or cancellation)
        deletes it again before the error propagates.
        """
        documents = list(documents or [])
        policy = self.ingestor.policy
        provider = self.ingestor.provider
        try:
            if not name or not name.strip():
                raise ValidationError("Knowledge store name is required", field="name")

            store_id = await policy.call(
                "create_knowledge_store",
                provider.create_knowledge_store,
                name.strip(),
                retry=False,
            )
            try:
                store, batch = await self._fill(
                    store_id, name.strip(), description, documents
                )
            except (Exception, asyncio.CancelledError) as e:
                logger.error(
                    f"Creating knowledge store {store_id} failed "
                    f"({e or e.__class__.__name__}), deleting it remotely"
                )
                cleanup = await delete_remote_best_effort(
                    policy, "delete_knowledge_store", provider.delete_knowledge_store, store_id
                )
                if not cleanup.remote_deleted:
                    logger.error(f"Orphaned remote knowledge store {store_id}")
                raise
        finally:
            for document in documents:
                self.ingestor.discard(document)

        logger.info(f"Created knowledge store {store_id} with {store.file_count} documents")
        return store, batch

    async def _fill(
        self,
        store_id: str,
        name: str,
        description: str,
        documents: list[DocumentUpload],
    ) -> tuple[KnowledgeStore, DocumentBatchResult]:
        batch = await self.ingestor.ingest(store_id, documents)

        try:
            document_ids = await self.ingestor.policy.call(
                "list_documents", self.ingestor.provider.list_documents, store_id
            )
            batch.file_count = len(document_ids)
        except Exception as e:
            message = f"Could not list documents of {store_id}, count left unset: {e}"
            logger.warning(message)
            batch.warnings.append(message)

        store = KnowledgeStore(
            id=store_id,
            name=name,
            description=description or "",
            file_count=batch.file_count,
        )
        await self.repo.insert_store(store)
        return store, batch


class DeleteKnowledgeStoreUseCase:
    """Delete a knowledge store that no assistant references."""

    def __init__(self, agent_repo: IAgentRepository, ingestor: DocumentIngestor):
        self.repo = agent_repo
        self.ingestor = ingestor

    async def execute(self, store_id: str) -> DeleteResult:
        """
        Raises:
            NotFoundError: If no local store matches store_id
            ConflictError: If an assistant still references the store
        """
        store = await self.repo.get_store(store_id)
        if store is None:
            raise NotFoundError("KnowledgeStore", store_id)

        referencing = await self.repo.count_assistants_using_store(store_id)
        if referencing:
            raise ConflictError(
                f"Knowledge store '{store_id}' is used by {referencing} assistant(s); "
                "detach it first",
                resource_type="KnowledgeStore",
                resource_id=store_id,
            )

        result = await delete_remote_best_effort(
            self.ingestor.policy,
            "delete_knowledge_store",
            self.ingestor.provider.delete_knowledge_store,
            store_id,
        )
        await self.repo.delete_store(store_id)
        logger.info(f"Deleted knowledge store {store_id}")
        return result
