"""
Domain entities for the agent lifecycle.

These are pure domain objects with no infrastructure dependencies. An
agent is the pair of a provider-hosted assistant and the knowledge store
(vector store) it searches.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

# ============================================
# Lifecycle States
# ============================================


class AgentStatus(str, Enum):
    """Durable lifecycle state of an assistant or knowledge store record."""

    ACTIVE = "active"
    UPDATING = "updating"
    DELETING = "deleting"


class ProvisionStatus(str, Enum):
    """State of a provisioning attempt for one owner.

    provisioning: remote resources may exist, local records do not yet
    active: local records committed
    failed: attempt aborted, remote ids kept for reconciliation
    abandoned: remote leftovers cleaned up by the reconciler
    released: the provisioned agent was deleted afterwards
    """

    PROVISIONING = "provisioning"
    ACTIVE = "active"
    FAILED = "failed"
    ABANDONED = "abandoned"
    RELEASED = "released"


class AssistantKind(str, Enum):
    SHARED = "shared"
    OWNED = "owned"


# ============================================
# Assistant / Knowledge Store
# ============================================


@dataclass
class KnowledgeStore:
    """Provider-hosted document index.

    Attributes:
        id: Remote store id
        name: Display name
        description: Free text description
        owner_id: Owning user id (None = shared)
        file_count: Snapshot of the remote document count, refreshed from
            a remote listing after every batch (None until one succeeds)
        status: Lifecycle state
    """

    id: str
    name: str
    description: str = ""
    owner_id: Optional[int] = None
    file_count: Optional[int] = None
    status: AgentStatus = AgentStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)
        if self.updated_at is None:
            self.updated_at = self.created_at


@dataclass
class Assistant:
    """Provider-hosted assistant configuration.

    Attributes:
        id: Remote assistant id
        name: Display name
        instructions: Instruction text as sent to the provider
        model: Model identifier
        store_id: Knowledge store searched by this assistant
        owner_id: Owning user id (None = shared assistant)
        status: Lifecycle state
    """

    id: str
    name: str
    instructions: str
    model: str
    store_id: Optional[str] = None
    owner_id: Optional[int] = None
    status: AgentStatus = AgentStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def kind(self) -> AssistantKind:
        return AssistantKind.SHARED if self.owner_id is None else AssistantKind.OWNED

    @property
    def is_shared(self) -> bool:
        return self.owner_id is None


@dataclass
class AssistantSummary:
    """Assistant row as shown in admin listings."""

    assistant: Assistant
    store_name: Optional[str] = None
    user_count: int = 0

    @property
    def kind(self) -> AssistantKind:
        return self.assistant.kind


@dataclass
class UserRecord:
    """The slice of a user row the core reads and writes."""

    id: int
    username: str
    role: str = "user"
    status: str = "active"
    assistant_ref: Optional[str] = None
    store_ref: Optional[str] = None


@dataclass
class UserAgent:
    """Assistant and knowledge store currently referenced by a user."""

    user_id: int
    assistant: Optional[Assistant] = None
    store: Optional[KnowledgeStore] = None

    @property
    def is_complete(self) -> bool:
        return self.assistant is not None and self.store is not None


# ============================================
# Partial Updates
# ============================================


class _Unset:
    """Marker for a field that is absent from an update."""

    _instance: Optional["_Unset"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

UPDATABLE_ASSISTANT_FIELDS = ("name", "instructions", "model", "store_id")


@dataclass(frozen=True)
class AssistantUpdate:
    """Explicit partial update for an assistant.

    A field left as UNSET is not sent to the provider and not touched
    locally. A field set to None or "" is a real value.

    Example:
        AssistantUpdate(instructions="Be brief.")         # only instructions
        AssistantUpdate(store_id=None)                    # detach the store
    """

    name: Any = UNSET
    instructions: Any = UNSET
    model: Any = UNSET
    store_id: Any = UNSET

    def present_fields(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in UPDATABLE_ASSISTANT_FIELDS
            if getattr(self, name) is not UNSET
        }

    @property
    def is_empty(self) -> bool:
        return not self.present_fields()

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "AssistantUpdate":
        """Build an update from a mapping, treating missing keys as UNSET.

        Accepts ``vector_store_id``/``storeId`` as aliases of ``store_id``.
        """
        aliases = {"vector_store_id": "store_id", "storeId": "store_id"}
        values = {}
        for key, value in data.items():
            name = aliases.get(key, key)
            if name in UPDATABLE_ASSISTANT_FIELDS:
                values[name] = value
        return cls(**values)


# ============================================
# Instruction Templates
# ============================================

USER_ID_PLACEHOLDER = "{USER_ID}"
_PLACEHOLDER_PATTERN = re.compile(r"\{USER_ID\}")


@dataclass(frozen=True)
class InstructionContext:
    """Values substituted into an instruction template."""

    owner_id: Optional[int] = None

    @classmethod
    def for_assistant(cls, assistant: Assistant) -> "InstructionContext":
        return cls(owner_id=assistant.owner_id)


def render_instructions(template: str, context: InstructionContext) -> str:
    """Personalize an instruction template for one assistant.

    Every ``{USER_ID}`` token is replaced by the owner id. Shared assistants
    (no owner) receive the template unchanged.
    """
    if context.owner_id is None:
        return template
    owner = str(context.owner_id)
    return _PLACEHOLDER_PATTERN.sub(lambda _match: owner, template)


# ============================================
# Documents
# ============================================


@dataclass
class DocumentUpload:
    """A local file to push into a knowledge store.

    Attributes:
        path: Location on disk
        filename: Name to report to the provider (defaults to the path name)
        staged: True for temporary upload copies, which are deleted after
            the attempt whatever its outcome. Corpus files are not staged.
    """

    path: Path
    filename: Optional[str] = None
    staged: bool = True

    def __post_init__(self):
        self.path = Path(self.path)
        if not self.filename:
            self.filename = self.path.name


@dataclass
class DocumentFailure:
    filename: str
    error: str


@dataclass
class DocumentBatchResult:
    """Outcome of a multi-document upload.

    Attributes:
        uploaded: Filenames attached to the store
        document_ids: Remote ids of the attached documents
        failed: Per-document failures
        file_count: Store document count from the remote listing, or None
            when the listing itself failed
        warnings: Degraded-but-successful conditions (cleanup failures etc.)
    """

    uploaded: list[str] = field(default_factory=list)
    document_ids: list[str] = field(default_factory=list)
    failed: list[DocumentFailure] = field(default_factory=list)
    file_count: Optional[int] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.uploaded) + len(self.failed)


# ============================================
# Operation Results
# ============================================


@dataclass
class ProvisionRecord:
    """Durable record of one provisioning attempt."""

    owner_id: Optional[int]
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    status: ProvisionStatus = ProvisionStatus.PROVISIONING
    store_id: Optional[str] = None
    assistant_id: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)
        if self.updated_at is None:
            self.updated_at = self.created_at


@dataclass
class ProvisionResult:
    assistant: Assistant
    store: KnowledgeStore
    uploaded: list[str] = field(default_factory=list)
    failed: list[DocumentFailure] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    already_provisioned: bool = False


@dataclass
class DeleteResult:
    """Outcome of a delete whose remote half is best-effort.

    Attributes:
        resource_id: Id of the deleted record
        remote_deleted: False when the provider call failed
        warnings: Why remote cleanup was incomplete
        file_count: Refreshed store count, for document removals
    """

    resource_id: str
    remote_deleted: bool = True
    warnings: list[str] = field(default_factory=list)
    file_count: Optional[int] = None

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


@dataclass
class BulkUpdateResult:
    """Aggregate outcome of a bulk instruction update."""

    total: int = 0
    updated: int = 0
    failed: int = 0
    updated_ids: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    examined: int = 0
    cleaned: int = 0
    deleted_remote: list[str] = field(default_factory=list)
    synced: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)
