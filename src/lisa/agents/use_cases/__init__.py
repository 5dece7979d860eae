"""Use cases layer - Business logic for the agent lifecycle.

Use cases depend only on the IAssistantProvider and IAgentRepository ports,
and send every provider call through RemoteCallPolicy.
"""

from .bulk_update_instructions import BulkUpdateInstructionsUseCase
from .maintenance import ReconcileAgentsUseCase, TeardownUserAgentUseCase
from .manage_assistants import (
    AssignAssistantUseCase,
    CreateAssistantUseCase,
    DeleteAssistantUseCase,
    UpdateAssistantUseCase,
)
from .manage_documents import (
    AddDocumentsUseCase,
    DocumentIngestor,
    RemoveDocumentUseCase,
    discover_corpus,
)
from .manage_knowledge_stores import (
    CreateKnowledgeStoreUseCase,
    DeleteKnowledgeStoreUseCase,
)
from .provision_agent import ProvisionAgentUseCase
from .remote import RemoteCallPolicy, RemotePolicyConfig

__all__ = [
    "AddDocumentsUseCase",
    "AssignAssistantUseCase",
    "BulkUpdateInstructionsUseCase",
    "CreateAssistantUseCase",
    "CreateKnowledgeStoreUseCase",
    "DeleteAssistantUseCase",
    "DeleteKnowledgeStoreUseCase",
    "DocumentIngestor",
    "ProvisionAgentUseCase",
    "ReconcileAgentsUseCase",
    "RemoteCallPolicy",
    "RemotePolicyConfig",
    "RemoveDocumentUseCase",
    "TeardownUserAgentUseCase",
    "UpdateAssistantUseCase",
    "discover_corpus",
]
