"""Domain layer - Pure domain entities and port interfaces.

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    UNSET,
    AgentStatus,
    Assistant,
    AssistantKind,
    AssistantSummary,
    AssistantUpdate,
    BulkUpdateResult,
    DeleteResult,
    DocumentBatchResult,
    DocumentFailure,
    DocumentUpload,
    InstructionContext,
    KnowledgeStore,
    ProvisionRecord,
    ProvisionResult,
    ProvisionStatus,
    ReconcileResult,
    UserAgent,
    UserRecord,
    render_instructions,
)
from .ports import IAgentRepository, IAssistantProvider

__all__ = [
    # Entities
    "AgentStatus",
    "Assistant",
    "AssistantKind",
    "AssistantSummary",
    "AssistantUpdate",
    "KnowledgeStore",
    "ProvisionRecord",
    "ProvisionStatus",
    "UserAgent",
    "UserRecord",
    "UNSET",
    # Documents
    "DocumentBatchResult",
    "DocumentFailure",
    "DocumentUpload",
    # Results
    "BulkUpdateResult",
    "DeleteResult",
    "ProvisionResult",
    "ReconcileResult",
    # Templates
    "InstructionContext",
    "render_instructions",
    # Ports
    "IAgentRepository",
    "IAssistantProvider",
]
