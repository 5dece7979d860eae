"""Tests for AgentLifecycleOrchestrator wiring."""

from unittest.mock import AsyncMock

import pytest

from lisa.agents.domain.entities import AssistantUpdate
from lisa.agents.orchestrator import AgentLifecycleOrchestrator
from lisa.config import Settings
from lisa.core.exceptions import ConfigurationError


@pytest.fixture
def settings(tmp_path):
    return Settings(
        default_instructions="Help user {USER_ID}.",
        default_model="gpt-4",
        default_corpus_dir=tmp_path / "corpus",
        remote_max_attempts=1,
        remote_initial_backoff=0.0,
    )


@pytest.fixture
def activity():
    sink = AsyncMock()
    sink.record = AsyncMock()
    return sink


@pytest.fixture
def orchestrator(provider, repo, settings, policy, activity):
    return AgentLifecycleOrchestrator(
        provider, repo, settings, activity_sink=activity, policy=policy
    )


class TestAgentLifecycleOrchestrator:
    async def test_provision_uses_settings(self, orchestrator, repo, provider):
        repo.add_user(7, "alice")

        result = await orchestrator.provision_agent(7, "Lisa Assistant - alice")

        assert result.assistant.instructions == "Help user 7."
        assert result.assistant.model == "gpt-4"
        agent = await orchestrator.get_user_agent(7)
        assert agent.is_complete

    async def test_update_then_list(self, orchestrator):
        assistant = await orchestrator.create_assistant("Lisa")

        await orchestrator.update_assistant(assistant.id, AssistantUpdate(name="Lisa 2"))
        summaries = await orchestrator.list_assistants()

        assert [s.assistant.name for s in summaries] == ["Lisa 2"]

    async def test_bulk_update_records_activity(self, orchestrator, activity):
        await orchestrator.create_assistant("Lisa")

        result = await orchestrator.bulk_update_instructions("Be brief.")

        assert result.updated == 1
        activity.record.assert_awaited_with(
            None,
            "assistants.bulk_update_instructions",
            {"total": 1, "updated": 1, "failed": 0},
        )

    async def test_store_lifecycle(self, orchestrator, make_document):
        store, batch = await orchestrator.create_knowledge_store(
            "KB", documents=[make_document("brakes.txt")]
        )
        added = await orchestrator.add_documents(store.id, [make_document("doors.md")])
        removed = await orchestrator.remove_document(store.id, batch.document_ids[0])
        deleted = await orchestrator.delete_knowledge_store(store.id)

        assert added.file_count == 2
        assert removed.file_count == 1
        assert deleted.remote_deleted
        assert await orchestrator.list_knowledge_stores() == []

    async def test_reconcile_defaults_to_configured_staleness(self, orchestrator, repo):
        await repo.claim_provision(7)

        result = await orchestrator.reconcile()

        assert result.examined == 0

    def test_from_settings_requires_api_key(self, settings):
        with pytest.raises(ConfigurationError):
            AgentLifecycleOrchestrator.from_settings(pool=None, settings=settings)
