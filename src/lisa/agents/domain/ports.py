"""
Port interfaces (abstract base classes) for the agent lifecycle.

These define the contracts that adapters must implement: the remote
assistant provider and the local agent repository.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, BinaryIO, Optional
from uuid import UUID

if TYPE_CHECKING:
    from .entities import (
        AgentStatus,
        Assistant,
        AssistantSummary,
        AssistantUpdate,
        KnowledgeStore,
        ProvisionRecord,
        UserAgent,
        UserRecord,
    )


# ============================================
# Remote Provider Interface
# ============================================


class IAssistantProvider(ABC):
    """Interface to the provider hosting assistants and knowledge stores.

    Implementations translate SDK failures into RemoteProviderError
    subclasses. A provider-side "not found" raises NotFoundError.
    """

    @abstractmethod
    async def create_assistant(
        self,
        name: str,
        instructions: str,
        model: str,
        store_id: Optional[str] = None,
    ) -> str:
        """Create an assistant and return its remote id."""
        pass

    @abstractmethod
    async def retrieve_assistant(self, assistant_id: str) -> AssistantUpdate:
        """Fetch the remote configuration, with every updatable field set."""
        pass

    @abstractmethod
    async def update_assistant(self, assistant_id: str, fields: dict[str, Any]) -> None:
        """Send only the given fields to the provider."""
        pass

    @abstractmethod
    async def delete_assistant(self, assistant_id: str) -> None:
        pass

    @abstractmethod
    async def create_knowledge_store(self, name: str) -> str:
        """Create an empty knowledge store and return its remote id."""
        pass

    @abstractmethod
    async def delete_knowledge_store(self, store_id: str) -> None:
        pass

    @abstractmethod
    async def upload_document(self, stream: BinaryIO, filename: str) -> str:
        """Upload a file and return its remote document id."""
        pass

    @abstractmethod
    async def attach_document(self, store_id: str, document_id: str) -> None:
        pass

    @abstractmethod
    async def detach_document(self, store_id: str, document_id: str) -> None:
        pass

    @abstractmethod
    async def delete_document(self, document_id: str) -> None:
        """Delete the uploaded file itself."""
        pass

    @abstractmethod
    async def list_documents(self, store_id: str) -> list[str]:
        """Return the ids of every document attached to a store."""
        pass


# ============================================
# Agent Repository Interface
# ============================================


class IAgentRepository(ABC):
    """Interface for assistant, knowledge store and provisioning records."""

    # --- assistants ---

    @abstractmethod
    async def get_assistant(self, assistant_id: str) -> Optional[Assistant]:
        pass

    @abstractmethod
    async def list_assistants(self) -> list[Assistant]:
        pass

    @abstractmethod
    async def list_assistant_summaries(self) -> list[AssistantSummary]:
        """Assistants with store name and the number of users referencing them."""
        pass

    @abstractmethod
    async def list_assistants_by_status(self, status: AgentStatus) -> list[Assistant]:
        pass

    @abstractmethod
    async def insert_assistant(self, assistant: Assistant) -> Assistant:
        pass

    @abstractmethod
    async def set_assistant_status(self, assistant_id: str, status: AgentStatus) -> None:
        pass

    @abstractmethod
    async def update_assistant_fields(
        self, assistant_id: str, fields: dict[str, Any]
    ) -> Assistant:
        """Merge fields into the record and mark it active."""
        pass

    @abstractmethod
    async def delete_assistant(self, assistant_id: str) -> bool:
        """Delete the record, clear user references and release its provision."""
        pass

    # --- knowledge stores ---

    @abstractmethod
    async def get_store(self, store_id: str) -> Optional[KnowledgeStore]:
        pass

    @abstractmethod
    async def list_stores(self) -> list[KnowledgeStore]:
        pass

    @abstractmethod
    async def insert_store(self, store: KnowledgeStore) -> KnowledgeStore:
        pass

    @abstractmethod
    async def set_store_file_count(self, store_id: str, file_count: int) -> None:
        """Overwrite the cached document count."""
        pass

    @abstractmethod
    async def count_assistants_using_store(self, store_id: str) -> int:
        pass

    @abstractmethod
    async def delete_store(self, store_id: str) -> bool:
        """Delete the record and clear user references to it."""
        pass

    # --- users ---

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        pass

    @abstractmethod
    async def get_user_agent(self, user_id: int) -> UserAgent:
        pass

    @abstractmethod
    async def set_user_assistant(self, user_id: int, assistant_id: Optional[str]) -> None:
        pass

    # --- provisioning ---

    @abstractmethod
    async def claim_provision(self, owner_id: Optional[int]) -> ProvisionRecord:
        """Durably start a provisioning attempt.

        Raises:
            ConflictError: If another attempt for the same owner is in flight
                or already active
        """
        pass

    @abstractmethod
    async def record_provision_remote(
        self,
        record_id: UUID,
        store_id: Optional[str] = None,
        assistant_id: Optional[str] = None,
    ) -> None:
        """Remember remote ids as soon as the provider returns them."""
        pass

    @abstractmethod
    async def fail_provision(self, record_id: UUID, error: str) -> None:
        pass

    @abstractmethod
    async def commit_provision(
        self,
        record_id: UUID,
        assistant: Assistant,
        store: KnowledgeStore,
    ) -> None:
        """In one transaction: insert both records, point the owner at them
        and mark the provision active."""
        pass

    @abstractmethod
    async def list_reconcilable_provisions(
        self, stale_after_seconds: float
    ) -> list[ProvisionRecord]:
        """Failed attempts plus attempts stuck in provisioning too long."""
        pass

    @abstractmethod
    async def abandon_provision(self, record_id: UUID) -> None:
        pass
