"""In-memory port implementations shared by the agent lifecycle tests."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, Optional
from uuid import UUID

import pytest

from lisa.agents.domain.entities import (
    AgentStatus,
    Assistant,
    AssistantSummary,
    AssistantUpdate,
    KnowledgeStore,
    ProvisionRecord,
    ProvisionStatus,
    UserAgent,
    UserRecord,
)
from lisa.agents.domain.ports import IAgentRepository, IAssistantProvider
from lisa.agents.use_cases.manage_documents import DocumentIngestor
from lisa.agents.use_cases.remote import RemoteCallPolicy, RemotePolicyConfig
from lisa.core.exceptions import ConflictError, NotFoundError
from lisa.core.resilience import CircuitBreaker


class MockAssistantProvider(IAssistantProvider):
    """Mock implementation of IAssistantProvider for testing.

    ``fail`` maps an operation name to an exception (raised on every call)
    or to a dict of {resource_id: exception} for targeted failures.
    """

    def __init__(self):
        self._ids = count(1)
        self.assistants: dict[str, dict[str, Any]] = {}
        self.stores: dict[str, list[str]] = {}
        self.files: dict[str, str] = {}
        self.fail: dict[str, Any] = {}
        self.calls: list[tuple] = []

    def _maybe_fail(self, operation: str, key: Optional[str] = None) -> None:
        failure = self.fail.get(operation)
        if isinstance(failure, dict):
            failure = failure.get(key)
        if failure is not None:
            raise failure

    async def create_assistant(self, name, instructions, model, store_id=None) -> str:
        self.calls.append(("create_assistant", name))
        self._maybe_fail("create_assistant", name)
        assistant_id = f"asst_{next(self._ids)}"
        self.assistants[assistant_id] = {
            "name": name,
            "instructions": instructions,
            "model": model,
            "store_id": store_id,
        }
        return assistant_id

    async def retrieve_assistant(self, assistant_id: str) -> AssistantUpdate:
        self._maybe_fail("retrieve_assistant", assistant_id)
        if assistant_id not in self.assistants:
            raise NotFoundError("Assistant", assistant_id)
        return AssistantUpdate(**self.assistants[assistant_id])

    async def update_assistant(self, assistant_id: str, fields: dict[str, Any]) -> None:
        self.calls.append(("update_assistant", assistant_id, dict(fields)))
        self._maybe_fail("update_assistant", assistant_id)
        if assistant_id not in self.assistants:
            raise NotFoundError("Assistant", assistant_id)
        self.assistants[assistant_id].update(fields)

    async def delete_assistant(self, assistant_id: str) -> None:
        self.calls.append(("delete_assistant", assistant_id))
        self._maybe_fail("delete_assistant", assistant_id)
        if self.assistants.pop(assistant_id, None) is None:
            raise NotFoundError("Assistant", assistant_id)

    async def create_knowledge_store(self, name: str) -> str:
        self.calls.append(("create_knowledge_store", name))
        self._maybe_fail("create_knowledge_store", name)
        store_id = f"vs_{next(self._ids)}"
        self.stores[store_id] = []
        return store_id

    async def delete_knowledge_store(self, store_id: str) -> None:
        self.calls.append(("delete_knowledge_store", store_id))
        self._maybe_fail("delete_knowledge_store", store_id)
        if self.stores.pop(store_id, None) is None:
            raise NotFoundError("KnowledgeStore", store_id)

    async def upload_document(self, stream, filename: str) -> str:
        self.calls.append(("upload_document", filename))
        self._maybe_fail("upload_document", filename)
        file_id = f"file_{next(self._ids)}"
        self.files[file_id] = stream.read().decode("utf-8", errors="replace")
        return file_id

    async def attach_document(self, store_id: str, document_id: str) -> None:
        self.calls.append(("attach_document", store_id, document_id))
        self._maybe_fail("attach_document", document_id)
        self.stores[store_id].append(document_id)

    async def detach_document(self, store_id: str, document_id: str) -> None:
        self.calls.append(("detach_document", store_id, document_id))
        self._maybe_fail("detach_document", document_id)
        if document_id not in self.stores.get(store_id, []):
            raise NotFoundError("Document", document_id)
        self.stores[store_id].remove(document_id)

    async def delete_document(self, document_id: str) -> None:
        self.calls.append(("delete_document", document_id))
        self._maybe_fail("delete_document", document_id)
        if self.files.pop(document_id, None) is None:
            raise NotFoundError("Document", document_id)

    async def list_documents(self, store_id: str) -> list[str]:
        self._maybe_fail("list_documents", store_id)
        if store_id not in self.stores:
            raise NotFoundError("KnowledgeStore", store_id)
        return list(self.stores[store_id])


class MockAgentRepository(IAgentRepository):
    """Mock implementation of IAgentRepository for testing."""

    def __init__(self):
        self.assistants: dict[str, Assistant] = {}
        self.stores: dict[str, KnowledgeStore] = {}
        self.users: dict[int, UserRecord] = {}
        self.provisions: dict[UUID, ProvisionRecord] = {}
        self.fail_commit: Optional[Exception] = None
        self.fail_insert_assistant: Optional[Exception] = None

    def add_user(self, user_id: int, username: str = "") -> UserRecord:
        user = UserRecord(id=user_id, username=username or f"user{user_id}")
        self.users[user_id] = user
        return user

    # --- assistants ---

    async def get_assistant(self, assistant_id):
        return self.assistants.get(assistant_id)

    async def list_assistants(self):
        return list(self.assistants.values())

    async def list_assistant_summaries(self):
        return [
            AssistantSummary(
                assistant=a,
                store_name=self.stores[a.store_id].name if a.store_id in self.stores else None,
                user_count=sum(1 for u in self.users.values() if u.assistant_ref == a.id),
            )
            for a in self.assistants.values()
        ]

    async def list_assistants_by_status(self, status):
        return [a for a in self.assistants.values() if a.status == status]

    async def insert_assistant(self, assistant):
        if self.fail_insert_assistant:
            raise self.fail_insert_assistant
        self.assistants[assistant.id] = assistant
        return assistant

    async def set_assistant_status(self, assistant_id, status):
        if assistant_id in self.assistants:
            self.assistants[assistant_id].status = status

    async def update_assistant_fields(self, assistant_id, fields):
        if assistant_id not in self.assistants:
            raise NotFoundError("Assistant", assistant_id)
        updated = replace(
            self.assistants[assistant_id],
            **fields,
            status=AgentStatus.ACTIVE,
            updated_at=datetime.now(timezone.utc),
        )
        self.assistants[assistant_id] = updated
        return updated

    async def delete_assistant(self, assistant_id):
        for user in self.users.values():
            if user.assistant_ref == assistant_id:
                user.assistant_ref = None
        for record in self.provisions.values():
            if record.assistant_id == assistant_id and record.status == ProvisionStatus.ACTIVE:
                record.status = ProvisionStatus.RELEASED
        return self.assistants.pop(assistant_id, None) is not None

    # --- knowledge stores ---

    async def get_store(self, store_id):
        return self.stores.get(store_id)

    async def list_stores(self):
        return list(self.stores.values())

    async def insert_store(self, store):
        self.stores[store.id] = store
        return store

    async def set_store_file_count(self, store_id, file_count):
        if store_id in self.stores:
            self.stores[store_id].file_count = file_count

    async def count_assistants_using_store(self, store_id):
        return sum(1 for a in self.assistants.values() if a.store_id == store_id)

    async def delete_store(self, store_id):
        for user in self.users.values():
            if user.store_ref == store_id:
                user.store_ref = None
        return self.stores.pop(store_id, None) is not None

    # --- users ---

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_user_agent(self, user_id):
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return UserAgent(
            user_id=user_id,
            assistant=self.assistants.get(user.assistant_ref),
            store=self.stores.get(user.store_ref),
        )

    async def set_user_assistant(self, user_id, assistant_id):
        if user_id not in self.users:
            raise NotFoundError("User", user_id)
        self.users[user_id].assistant_ref = assistant_id

    # --- provisioning ---

    async def claim_provision(self, owner_id):
        if owner_id is not None:
            for record in self.provisions.values():
                if record.owner_id == owner_id and record.status in (
                    ProvisionStatus.PROVISIONING,
                    ProvisionStatus.ACTIVE,
                ):
                    raise ConflictError(
                        f"Provisioning already in progress for user {owner_id}",
                        resource_type="AgentProvision",
                        resource_id=owner_id,
                    )
        record = ProvisionRecord(owner_id=owner_id)
        self.provisions[record.id] = record
        return record

    async def record_provision_remote(self, record_id, store_id=None, assistant_id=None):
        record = self.provisions[record_id]
        if store_id:
            record.store_id = store_id
        if assistant_id:
            record.assistant_id = assistant_id

    async def fail_provision(self, record_id, error):
        self.provisions[record_id].status = ProvisionStatus.FAILED
        self.provisions[record_id].error = error

    async def commit_provision(self, record_id, assistant, store):
        if self.fail_commit:
            raise self.fail_commit
        self.stores[store.id] = store
        self.assistants[assistant.id] = assistant
        if assistant.owner_id is not None:
            user = self.users[assistant.owner_id]
            user.assistant_ref = assistant.id
            user.store_ref = store.id
        self.provisions[record_id].status = ProvisionStatus.ACTIVE

    async def list_reconcilable_provisions(self, stale_after_seconds):
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=stale_after_seconds)
        return [
            r for r in self.provisions.values()
            if r.status == ProvisionStatus.FAILED
            or (r.status == ProvisionStatus.PROVISIONING and r.updated_at < cutoff)
        ]

    async def abandon_provision(self, record_id):
        self.provisions[record_id].status = ProvisionStatus.ABANDONED


# ============================================
# Fixtures
# ============================================


@pytest.fixture
def provider():
    return MockAssistantProvider()


@pytest.fixture
def repo():
    return MockAgentRepository()


@pytest.fixture
def policy():
    """Single attempt, no backoff, short deadline."""
    return RemoteCallPolicy(
        RemotePolicyConfig(timeout=5.0, max_attempts=1, initial_backoff=0.0),
        CircuitBreaker(failure_threshold=100, name="test"),
    )


@pytest.fixture
def ingestor(provider, policy):
    return DocumentIngestor(provider, policy, max_upload_bytes=1024)


@pytest.fixture
def make_document(tmp_path):
    """Create a staged upload file and return its DocumentUpload."""
    from lisa.agents.domain.entities import DocumentUpload

    def _make(name: str, content: str = "brake caliper manual", staged: bool = True):
        path = tmp_path / name
        path.write_text(content)
        return DocumentUpload(path=path, staged=staged)

    return _make
