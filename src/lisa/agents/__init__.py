"""Agent lifecycle module.

Keeps provider-hosted assistants and knowledge stores consistent with their
local records through provisioning, updates, deletion and bulk changes.

Architecture:
    domain/     - Pure domain entities and port interfaces
    use_cases/  - Business logic orchestration
    adapters/   - Infrastructure implementations (OpenAI, PostgreSQL)
"""

from .domain import (
    UNSET,
    AgentStatus,
    Assistant,
    AssistantUpdate,
    BulkUpdateResult,
    DeleteResult,
    DocumentBatchResult,
    DocumentUpload,
    KnowledgeStore,
    ProvisionResult,
    ReconcileResult,
)
from .orchestrator import AgentLifecycleOrchestrator

__all__ = [
    "AgentLifecycleOrchestrator",
    "AgentStatus",
    "Assistant",
    "AssistantUpdate",
    "BulkUpdateResult",
    "DeleteResult",
    "DocumentBatchResult",
    "DocumentUpload",
    "KnowledgeStore",
    "ProvisionResult",
    "ReconcileResult",
    "UNSET",
]
