"""Provision Agent Use Case - creates a knowledge store and an assistant.

Workflow:
1. Return the existing agent if the owner already has one
2. Claim a provisioning record (serializes provisioning per owner)
3. Create the knowledge store remotely (fail fast)
4. Upload seed documents, or the default corpus when none are given
5. Create the assistant remotely with personalized instructions
6. Commit both records and the owner's references in one transaction

Remote ids are written to the provisioning record as soon as they exist.
If a later step fails the remote resources are deleted again; whatever
cannot be deleted stays on a failed record for the reconciler.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

from ...core.context import IActivitySink, record_activity
from ...core.exceptions import ConflictError, NotFoundError, ValidationError
from ..domain.entities import (
    Assistant,
    DocumentUpload,
    InstructionContext,
    KnowledgeStore,
    ProvisionRecord,
    ProvisionResult,
    UserAgent,
    render_instructions,
)
from ..domain.ports import IAgentRepository, IAssistantProvider
from .manage_documents import ALLOWED_EXTENSIONS, DocumentIngestor, discover_corpus
from .remote import RemoteCallPolicy

logger = logging.getLogger(__name__)


class ProvisionAgentUseCase:
    """Provision an assistant/knowledge store pair for a user or for everyone.

    Example:
        use_case = ProvisionAgentUseCase(
            agent_repo=PostgresAgentRepository(pool),
            provider=OpenAIAssistantProvider(config),
            policy=RemoteCallPolicy(),
            ingestor=ingestor,
            instructions_template=settings.default_instructions,
            model=settings.default_model,
            corpus_dir=settings.default_corpus_dir,
        )
        result = await use_case.execute(owner_id=7, display_name="Lisa Assistant - alice")
    """

    def __init__(
        self,
        agent_repo: IAgentRepository,
        provider: IAssistantProvider,
        policy: RemoteCallPolicy,
        ingestor: DocumentIngestor,
        instructions_template: str,
        model: str,
        corpus_dir: Optional[Path] = None,
        corpus_extensions: Sequence[str] = ALLOWED_EXTENSIONS,
        activity_sink: Optional[IActivitySink] = None,
    ):
        self.repo = agent_repo
        self.provider = provider
        self.policy = policy
        self.ingestor = ingestor
        self.instructions_template = instructions_template
        self.model = model
        self.corpus_dir = corpus_dir
        self.corpus_extensions = corpus_extensions
        self.activity = activity_sink

    async def execute(
        self,
        owner_id: Optional[int],
        display_name: str,
        seed_documents: Optional[Sequence[DocumentUpload]] = None,
    ) -> ProvisionResult:
        """Provision an agent.

        Args:
            owner_id: Owning user id, or None for a shared agent
            display_name: Assistant name; the store is named after it
            seed_documents: Documents to upload; the default corpus is used
                when empty

        Returns:
            ProvisionResult; ``already_provisioned`` is True when the owner
            already had an agent and nothing was created

        Raises:
            ValidationError: If display_name is blank
            NotFoundError: If the owner does not exist
            ConflictError: If another provisioning for the owner is in flight
            RemoteProviderError: If a remote create call fails
            PersistenceError: If the local commit fails
        """
        seed_documents = list(seed_documents or [])
        try:
            return await self._execute(owner_id, display_name, seed_documents)
        finally:
            for document in seed_documents:
                self.ingestor.discard(document)

    async def _execute(
        self,
        owner_id: Optional[int],
        display_name: str,
        seed_documents: list[DocumentUpload],
    ) -> ProvisionResult:
        if not display_name or not display_name.strip():
            raise ValidationError("Display name is required", field="display_name")
        display_name = display_name.strip()

        if owner_id is not None:
            if await self.repo.get_user(owner_id) is None:
                raise NotFoundError("User", owner_id)
            existing = await self._existing_agent(owner_id)
            if existing:
                logger.info(f"User {owner_id} already has agent {existing.assistant.id}")
                return ProvisionResult(
                    assistant=existing.assistant,
                    store=existing.store,
                    already_provisioned=True,
                )

        try:
            record = await self.repo.claim_provision(owner_id)
        except ConflictError:
            existing = await self._existing_agent(owner_id) if owner_id is not None else None
            if existing:
                return ProvisionResult(
                    assistant=existing.assistant,
                    store=existing.store,
                    already_provisioned=True,
                )
            raise

        logger.info(f"Provisioning agent '{display_name}' for owner {owner_id} ({record.id})")

        store_id: Optional[str] = None
        assistant_id: Optional[str] = None
        try:
            # Step 1: knowledge store
            store_id = await self.policy.call(
                "create_knowledge_store",
                self.provider.create_knowledge_store,
                f"{display_name} Knowledge Base",
                retry=False,
            )
            await self.repo.record_provision_remote(record.id, store_id=store_id)

            # Step 2: documents
            documents = seed_documents
            if not documents and self.corpus_dir is not None:
                documents = discover_corpus(self.corpus_dir, self.corpus_extensions)
            batch = await self.ingestor.ingest(store_id, documents)
            warnings = list(batch.warnings)
            file_count = await self._count_documents(store_id, warnings)

            # Step 3: assistant
            instructions = render_instructions(
                self.instructions_template, InstructionContext(owner_id=owner_id)
            )
            assistant_id = await self.policy.call(
                "create_assistant",
                self.provider.create_assistant,
                display_name,
                instructions,
                self.model,
                store_id,
                retry=False,
            )
            await self.repo.record_provision_remote(record.id, assistant_id=assistant_id)

            # Step 4: local commit
            store = KnowledgeStore(
                id=store_id,
                name=f"{display_name} Knowledge Base",
                owner_id=owner_id,
                file_count=file_count,
            )
            assistant = Assistant(
                id=assistant_id,
                name=display_name,
                instructions=instructions,
                model=self.model,
                store_id=store_id,
                owner_id=owner_id,
            )
            await self.repo.commit_provision(record.id, assistant, store)

        except (Exception, asyncio.CancelledError) as e:
            logger.error(f"Provisioning {record.id} failed: {e}")
            await self._compensate(record, store_id, assistant_id, e)
            raise

        logger.info(
            f"Provisioned assistant {assistant_id} with store {store_id} "
            f"({len(batch.uploaded)} documents, {len(batch.failed)} failed)"
        )
        await record_activity(
            self.activity,
            owner_id,
            "agent.provisioned",
            {"assistant_id": assistant_id, "store_id": store_id},
        )
        return ProvisionResult(
            assistant=assistant,
            store=store,
            uploaded=batch.uploaded,
            failed=batch.failed,
            warnings=warnings,
        )

    async def _existing_agent(self, owner_id: int) -> Optional[UserAgent]:
        agent = await self.repo.get_user_agent(owner_id)
        if agent.is_complete and agent.assistant.owner_id == owner_id:
            return agent
        return None

    async def _count_documents(self, store_id: str, warnings: list[str]) -> Optional[int]:
        try:
            document_ids = await self.policy.call(
                "list_documents", self.provider.list_documents, store_id
            )
            return len(document_ids)
        except Exception as e:
            message = f"Could not list documents of {store_id}, count left unset: {e}"
            logger.warning(message)
            warnings.append(message)
            return None

    async def _compensate(
        self,
        record: ProvisionRecord,
        store_id: Optional[str],
        assistant_id: Optional[str],
        error: BaseException,
    ) -> None:
        """Delete remote leftovers and close the provisioning record."""
        cleaned = True
        if assistant_id:
            cleaned &= await self._delete_remote(
                "delete_assistant", self.provider.delete_assistant, assistant_id
            )
        if store_id:
            cleaned &= await self._delete_remote(
                "delete_knowledge_store", self.provider.delete_knowledge_store, store_id
            )

        try:
            await self.repo.fail_provision(record.id, str(error) or error.__class__.__name__)
            if cleaned:
                await self.repo.abandon_provision(record.id)
        except Exception as db_error:
            logger.error(f"Could not close provisioning record {record.id}: {db_error}")

        if not cleaned:
            logger.warning(
                f"Provisioning {record.id} left remote resources behind "
                f"(assistant={assistant_id}, store={store_id}); reconcile will retry"
            )

    async def _delete_remote(self, operation: str, func, resource_id: str) -> bool:
        try:
            await self.policy.call(operation, func, resource_id)
            return True
        except NotFoundError:
            return True
        except Exception as e:
            logger.warning(f"Compensating {operation} for {resource_id} failed: {e}")
            return False
