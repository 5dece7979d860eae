"""Document ingestion use cases.

Uploading a document is three steps: check the local file, upload it to
the provider, attach it to a knowledge store. Every staged (temporary) copy
is removed afterwards whatever the outcome, and the store's cached document
count is always refreshed from a remote listing.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Sequence

from ...core.exceptions import NotFoundError, ValidationError
from ...core.resilience import gather_settled
from ..domain.entities import (
    DeleteResult,
    DocumentBatchResult,
    DocumentFailure,
    DocumentUpload,
)
from ..domain.ports import IAgentRepository, IAssistantProvider
from .remote import RemoteCallPolicy

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".txt", ".md", ".pdf", ".doc", ".docx")


def discover_corpus(
    directory: Path,
    extensions: Sequence[str] = ALLOWED_EXTENSIONS,
) -> list[DocumentUpload]:
    """List the default corpus documents in ``directory``.

    Corpus files are not staged and are never deleted after upload.
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning(f"Default corpus directory not found: {directory}")
        return []

    wanted = {ext.lower() for ext in extensions}
    documents = [
        DocumentUpload(path=path, staged=False)
        for path in sorted(directory.iterdir())
        if path.is_file() and path.suffix.lower() in wanted
    ]
    logger.info(f"Found {len(documents)} corpus documents in {directory}")
    return documents


class DocumentIngestor:
    """Upload and attach documents to a knowledge store.

    Each document is handled independently; one failure never aborts the
    batch. Staged files are deleted in every case, including cancellation.
    """

    def __init__(
        self,
        provider: IAssistantProvider,
        policy: RemoteCallPolicy,
        max_upload_bytes: int = 10 * 1024 * 1024,
        allowed_extensions: Sequence[str] = ALLOWED_EXTENSIONS,
        max_concurrent: int = 3,
        budget_seconds: Optional[float] = None,
    ):
        self.provider = provider
        self.policy = policy
        self.max_upload_bytes = max_upload_bytes
        self.allowed_extensions = tuple(e.lower() for e in allowed_extensions)
        self.max_concurrent = max_concurrent
        self.budget_seconds = budget_seconds

    def check(self, document: DocumentUpload) -> None:
        """Presence, type and size checks.

        Raises:
            ValidationError: If the document cannot be uploaded
        """
        path = document.path
        suffix = Path(document.filename).suffix.lower()
        if suffix not in self.allowed_extensions:
            raise ValidationError(
                f"Unsupported file type '{suffix or document.filename}'",
                field="documents",
            )
        if not path.is_file() or not os.access(path, os.R_OK):
            raise ValidationError(
                f"Document '{document.filename}' is not readable",
                field="documents",
            )
        size = path.stat().st_size
        if size == 0:
            raise ValidationError(
                f"Document '{document.filename}' is empty", field="documents"
            )
        if size > self.max_upload_bytes:
            raise ValidationError(
                f"Document '{document.filename}' is {size} bytes, "
                f"limit is {self.max_upload_bytes}",
                field="documents",
            )

    async def ingest(
        self,
        store_id: str,
        documents: Iterable[DocumentUpload],
    ) -> DocumentBatchResult:
        """Upload and attach every document. Does not refresh the count."""
        documents = list(documents)
        result = DocumentBatchResult()
        if not documents:
            return result

        async def ingest_one(document: DocumentUpload) -> str:
            try:
                self.check(document)
                return await self._upload_and_attach(store_id, document)
            finally:
                self.discard(document, result.warnings)

        try:
            outcomes = await gather_settled(
                documents,
                ingest_one,
                max_concurrent=self.max_concurrent,
                budget_seconds=self.budget_seconds,
            )
        finally:
            for document in documents:
                self.discard(document, result.warnings)

        for outcome in outcomes:
            document = outcome.item
            if outcome.ok:
                result.uploaded.append(document.filename)
                result.document_ids.append(outcome.value)
                logger.info(f"Uploaded {document.filename} to {store_id}")
            else:
                message = getattr(outcome.error, "message", None) or str(outcome.error)
                result.failed.append(DocumentFailure(document.filename, message))
                logger.error(f"Failed to upload {document.filename}: {message}")
        return result

    async def _upload_and_attach(self, store_id: str, document: DocumentUpload) -> str:
        async def upload() -> str:
            with document.path.open("rb") as stream:
                return await self.provider.upload_document(stream, document.filename)

        document_id = await self.policy.call("upload_document", upload, retry=False)
        try:
            await self.policy.call(
                "attach_document", self.provider.attach_document, store_id, document_id
            )
        except Exception:
            try:
                await self.policy.call(
                    "delete_document", self.provider.delete_document, document_id,
                    retry=False,
                )
            except Exception as cleanup_error:
                logger.warning(
                    f"Could not delete unattached upload {document_id}: {cleanup_error}"
                )
            raise
        return document_id

    @staticmethod
    def discard(document: DocumentUpload, warnings: Optional[list[str]] = None) -> None:
        if not document.staged:
            return
        try:
            document.path.unlink(missing_ok=True)
        except OSError as e:
            message = f"Could not remove staged file {document.path}: {e}"
            logger.warning(message)
            if warnings is not None and message not in warnings:
                warnings.append(message)

    async def refresh_file_count(self, repo: IAgentRepository, store_id: str) -> int:
        """Overwrite the cached document count from the remote listing."""
        document_ids = await self.policy.call(
            "list_documents", self.provider.list_documents, store_id
        )
        count = len(document_ids)
        await repo.set_store_file_count(store_id, count)
        logger.debug(f"Store {store_id} now holds {count} documents")
        return count


class AddDocumentsUseCase:
    """Upload documents into an existing knowledge store.

    Example:
        result = await AddDocumentsUseCase(repo, ingestor).execute(
            "vs_123", [DocumentUpload(Path("/tmp/upload-1"), "manual.pdf")]
        )
    """

    def __init__(self, agent_repo: IAgentRepository, ingestor: DocumentIngestor):
        self.repo = agent_repo
        self.ingestor = ingestor

    async def execute(
        self,
        store_id: str,
        documents: Sequence[DocumentUpload],
    ) -> DocumentBatchResult:
        """Ingest the documents, then refresh ``file_count``.

        Raises:
            NotFoundError: If no local knowledge store matches ``store_id``
        """
        documents = list(documents)
        try:
            store = await self.repo.get_store(store_id)
            if store is None:
                raise NotFoundError("KnowledgeStore", store_id)
            result = await self.ingestor.ingest(store_id, documents)
        finally:
            for document in documents:
                self.ingestor.discard(document)

        try:
            result.file_count = await self.ingestor.refresh_file_count(self.repo, store_id)
        except Exception as e:
            message = f"Could not refresh document count for {store_id}: {e}"
            logger.warning(message)
            result.warnings.append(message)

        logger.info(
            f"Added documents to {store_id}: {len(result.uploaded)} uploaded, "
            f"{len(result.failed)} failed"
        )
        return result


class RemoveDocumentUseCase:
    """Detach a document from a store and delete the uploaded file."""

    def __init__(self, agent_repo: IAgentRepository, ingestor: DocumentIngestor):
        self.repo = agent_repo
        self.ingestor = ingestor

    async def execute(self, store_id: str, document_id: str) -> DeleteResult:
        """
        Raises:
            NotFoundError: If the store is unknown locally or the document is
                not attached remotely
            RemoteProviderError: If the detach call fails
        """
        store = await self.repo.get_store(store_id)
        if store is None:
            raise NotFoundError("KnowledgeStore", store_id)

        policy = self.ingestor.policy
        provider = self.ingestor.provider
        result = DeleteResult(resource_id=document_id)

        await policy.call("detach_document", provider.detach_document, store_id, document_id)

        try:
            await policy.call("delete_document", provider.delete_document, document_id)
        except NotFoundError:
            pass
        except Exception as e:
            message = f"Detached {document_id} but could not delete the file: {e}"
            logger.warning(message)
            result.remote_deleted = False
            result.warnings.append(message)

        try:
            result.file_count = await self.ingestor.refresh_file_count(self.repo, store_id)
        except Exception as e:
            message = f"Could not refresh document count for {store_id}: {e}"
            logger.warning(message)
            result.warnings.append(message)
        return result
