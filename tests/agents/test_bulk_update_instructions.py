"""Tests for BulkUpdateInstructionsUseCase."""

import asyncio

import pytest

from lisa.agents.domain.entities import AgentStatus, Assistant
from lisa.agents.use_cases.bulk_update_instructions import BulkUpdateInstructionsUseCase
from lisa.agents.use_cases.remote import RemoteCallPolicy, RemotePolicyConfig
from lisa.core.exceptions import RemoteUnavailableError, ValidationError

TEMPLATE = "You are Lisa. User: {USER_ID}."


@pytest.fixture
async def assistants(repo, provider):
    created = []
    for owner_id in (None, 7, 8):
        assistant_id = await provider.create_assistant("Lisa", "Old", "gpt-4")
        assistant = Assistant(
            id=assistant_id, name="Lisa", instructions="Old", model="gpt-4", owner_id=owner_id
        )
        await repo.insert_assistant(assistant)
        created.append(assistant)
    return created


class TestBulkUpdateInstructions:
    async def test_personalizes_per_owner(self, repo, provider, policy, assistants):
        shared, owned_7, owned_8 = assistants

        result = await BulkUpdateInstructionsUseCase(repo, provider, policy).execute(TEMPLATE)

        assert result.total == 3
        assert result.updated == 3
        assert result.failed == 0
        assert result.success
        assert repo.assistants[shared.id].instructions == TEMPLATE
        assert repo.assistants[owned_7.id].instructions == "You are Lisa. User: 7."
        assert provider.assistants[owned_8.id]["instructions"] == "You are Lisa. User: 8."

    async def test_one_failure_is_isolated(self, repo, provider, policy, assistants):
        failing = assistants[1]
        provider.fail["update_assistant"] = {
            failing.id: RemoteUnavailableError("provider down", status_code=503)
        }

        result = await BulkUpdateInstructionsUseCase(repo, provider, policy).execute(TEMPLATE)

        assert result.updated == 2
        assert result.failed == 1
        assert result.failures[0][0] == failing.id
        assert "provider down" in result.failures[0][1]
        assert repo.assistants[failing.id].instructions == "Old"
        assert failing.id not in result.updated_ids

    async def test_transient_failure_is_retried(self, repo, provider, assistants):
        target = assistants[0]
        attempts = {"count": 0}
        original = provider.update_assistant

        async def flaky(assistant_id, fields):
            if assistant_id == target.id:
                attempts["count"] += 1
                if attempts["count"] == 1:
                    raise RemoteUnavailableError("rate limited", status_code=429)
            await original(assistant_id, fields)

        provider.update_assistant = flaky
        policy = RemoteCallPolicy(RemotePolicyConfig(max_attempts=3, initial_backoff=0.0))

        result = await BulkUpdateInstructionsUseCase(repo, provider, policy).execute(TEMPLATE)

        assert result.updated == 3
        assert attempts["count"] == 2

    async def test_budget_cancels_slow_updates(self, repo, provider, policy, assistants):
        slow = assistants[2]
        original = provider.update_assistant

        async def sometimes_slow(assistant_id, fields):
            if assistant_id == slow.id:
                await asyncio.sleep(10)
            await original(assistant_id, fields)

        provider.update_assistant = sometimes_slow

        result = await BulkUpdateInstructionsUseCase(
            repo, provider, policy, budget_seconds=0.2
        ).execute(TEMPLATE)

        assert result.updated == 2
        assert result.failed == 1
        assert result.failures[0][0] == slow.id
        assert repo.assistants[slow.id].instructions == "Old"

    async def test_skips_assistants_being_deleted(self, repo, provider, policy, assistants):
        await repo.set_assistant_status(assistants[0].id, AgentStatus.DELETING)

        result = await BulkUpdateInstructionsUseCase(repo, provider, policy).execute(TEMPLATE)

        assert result.total == 2
        assert repo.assistants[assistants[0].id].instructions == "Old"

    async def test_blank_template(self, repo, provider, policy):
        with pytest.raises(ValidationError):
            await BulkUpdateInstructionsUseCase(repo, provider, policy).execute("  ")

    async def test_no_assistants(self, repo, provider, policy):
        result = await BulkUpdateInstructionsUseCase(repo, provider, policy).execute(TEMPLATE)

        assert result.total == 0
        assert result.success
