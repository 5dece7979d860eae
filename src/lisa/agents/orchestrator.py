"""Agent Lifecycle Orchestrator.

Single entry point for everything that creates, changes or removes
assistants and knowledge stores. Each operation delegates to a use case
that depends only on the IAssistantProvider and IAgentRepository ports.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

from ..config import Settings
from ..core.context import IActivitySink, LoggingActivitySink, record_activity
from ..core.resilience import CircuitBreaker
from .domain.entities import (
    Assistant,
    AssistantSummary,
    AssistantUpdate,
    BulkUpdateResult,
    DeleteResult,
    DocumentBatchResult,
    DocumentUpload,
    KnowledgeStore,
    ProvisionResult,
    ReconcileResult,
    UserAgent,
)
from .domain.ports import IAgentRepository, IAssistantProvider
from .use_cases.bulk_update_instructions import BulkUpdateInstructionsUseCase
from .use_cases.maintenance import ReconcileAgentsUseCase, TeardownUserAgentUseCase
from .use_cases.manage_assistants import (
    AssignAssistantUseCase,
    CreateAssistantUseCase,
    DeleteAssistantUseCase,
    UpdateAssistantUseCase,
)
from .use_cases.manage_documents import (
    AddDocumentsUseCase,
    DocumentIngestor,
    RemoveDocumentUseCase,
)
from .use_cases.manage_knowledge_stores import (
    CreateKnowledgeStoreUseCase,
    DeleteKnowledgeStoreUseCase,
)
from .use_cases.provision_agent import ProvisionAgentUseCase
from .use_cases.remote import RemoteCallPolicy, RemotePolicyConfig

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class AgentLifecycleOrchestrator:
    """Keep provider-hosted agents and their local records consistent.

    Example:
        orchestrator = AgentLifecycleOrchestrator.from_settings(pool, settings)
        result = await orchestrator.provision_agent(7, "Lisa Assistant - alice")
        summary = await orchestrator.bulk_update_instructions(template)
    """

    def __init__(
        self,
        provider: IAssistantProvider,
        agent_repo: IAgentRepository,
        settings: Optional[Settings] = None,
        activity_sink: Optional[IActivitySink] = None,
        policy: Optional[RemoteCallPolicy] = None,
    ):
        self.settings = settings or Settings()
        self.provider = provider
        self.repo = agent_repo
        self.activity = activity_sink or LoggingActivitySink()
        self.policy = policy or RemoteCallPolicy(
            RemotePolicyConfig(
                timeout=self.settings.remote_timeout,
                max_attempts=self.settings.remote_max_attempts,
                initial_backoff=self.settings.remote_initial_backoff,
            ),
            CircuitBreaker(name="assistant-provider"),
        )
        self.ingestor = DocumentIngestor(
            provider,
            self.policy,
            max_upload_bytes=self.settings.max_upload_bytes,
            allowed_extensions=self.settings.corpus_extensions,
            max_concurrent=self.settings.bulk_max_concurrency,
            budget_seconds=self.settings.batch_budget,
        )

    @classmethod
    def from_settings(
        cls,
        pool: "asyncpg.Pool",
        settings: Settings,
        activity_sink: Optional[IActivitySink] = None,
    ) -> "AgentLifecycleOrchestrator":
        """Wire the OpenAI provider and the PostgreSQL repository.

        Raises:
            ConfigurationError: If OPENAI_API_KEY is not configured
        """
        from .adapters.openai_provider import OpenAIAssistantProvider, OpenAIProviderConfig
        from .adapters.postgres_agent_repo import PostgresAgentRepository

        settings.require("openai_api_key")
        provider = OpenAIAssistantProvider(
            OpenAIProviderConfig(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.remote_timeout,
                store_expiry_days=settings.knowledge_store_expiry_days,
            )
        )
        return cls(provider, PostgresAgentRepository(pool), settings, activity_sink)

    # ============================================
    # Provisioning
    # ============================================

    async def provision_agent(
        self,
        owner_id: Optional[int],
        display_name: str,
        seed_documents: Optional[Sequence[DocumentUpload]] = None,
        corpus_dir: Optional[Path] = None,
    ) -> ProvisionResult:
        use_case = ProvisionAgentUseCase(
            self.repo,
            self.provider,
            self.policy,
            self.ingestor,
            instructions_template=self.settings.default_instructions,
            model=self.settings.default_model,
            corpus_dir=corpus_dir or self.settings.default_corpus_dir,
            corpus_extensions=self.settings.corpus_extensions,
            activity_sink=self.activity,
        )
        return await use_case.execute(owner_id, display_name, seed_documents)

    async def teardown_user_agent(self, user_id: int) -> DeleteResult:
        return await TeardownUserAgentUseCase(
            self.repo, self.provider, self.policy, self.activity
        ).execute(user_id)

    async def reconcile(self, stale_after_seconds: Optional[float] = None) -> ReconcileResult:
        stale = (
            stale_after_seconds
            if stale_after_seconds is not None
            else self.settings.provision_stale_after
        )
        return await ReconcileAgentsUseCase(
            self.repo, self.provider, self.policy
        ).execute(stale)

    # ============================================
    # Assistants
    # ============================================

    async def create_assistant(
        self,
        name: str,
        instructions: Optional[str] = None,
        model: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> Assistant:
        return await CreateAssistantUseCase(
            self.repo,
            self.provider,
            self.policy,
            default_instructions=self.settings.default_instructions,
            default_model=self.settings.default_model,
        ).execute(name, instructions, model, store_id)

    async def update_assistant(self, assistant_id: str, update: AssistantUpdate) -> Assistant:
        return await UpdateAssistantUseCase(
            self.repo, self.provider, self.policy
        ).execute(assistant_id, update)

    async def delete_assistant(self, assistant_id: str) -> DeleteResult:
        return await DeleteAssistantUseCase(
            self.repo, self.provider, self.policy, self.activity
        ).execute(assistant_id)

    async def assign_assistant(self, user_id: int, assistant_id: str) -> Assistant:
        return await AssignAssistantUseCase(self.repo).execute(user_id, assistant_id)

    async def bulk_update_instructions(self, template: str) -> BulkUpdateResult:
        result = await BulkUpdateInstructionsUseCase(
            self.repo,
            self.provider,
            self.policy,
            max_concurrent=self.settings.bulk_max_concurrency,
            budget_seconds=self.settings.batch_budget,
        ).execute(template)
        await record_activity(
            self.activity,
            None,
            "assistants.bulk_update_instructions",
            {"total": result.total, "updated": result.updated, "failed": result.failed},
        )
        return result

    async def list_assistants(self) -> list[AssistantSummary]:
        return await self.repo.list_assistant_summaries()

    async def get_user_agent(self, user_id: int) -> UserAgent:
        return await self.repo.get_user_agent(user_id)

    # ============================================
    # Knowledge stores and documents
    # ============================================

    async def create_knowledge_store(
        self,
        name: str,
        description: str = "",
        documents: Optional[Sequence[DocumentUpload]] = None,
    ) -> tuple[KnowledgeStore, DocumentBatchResult]:
        return await CreateKnowledgeStoreUseCase(self.repo, self.ingestor).execute(
            name, description, documents
        )

    async def delete_knowledge_store(self, store_id: str) -> DeleteResult:
        return await DeleteKnowledgeStoreUseCase(self.repo, self.ingestor).execute(store_id)

    async def list_knowledge_stores(self) -> list[KnowledgeStore]:
        return await self.repo.list_stores()

    async def add_documents(
        self, store_id: str, documents: Sequence[DocumentUpload]
    ) -> DocumentBatchResult:
        return await AddDocumentsUseCase(self.repo, self.ingestor).execute(store_id, documents)

    async def remove_document(self, store_id: str, document_id: str) -> DeleteResult:
        return await RemoveDocumentUseCase(self.repo, self.ingestor).execute(
            store_id, document_id
        )
