"""Cleanup use cases: user agent teardown and reconciliation.

Teardown runs when a user account is removed. Reconciliation removes remote
resources left behind by provisioning attempts that never committed, copies
the remote configuration onto assistants stuck in an interrupted update, and
finishes assistant deletions that were interrupted.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from ...core.context import IActivitySink, record_activity
from ...core.exceptions import NotFoundError
from ..domain.entities import AgentStatus, DeleteResult, ReconcileResult
from ..domain.ports import IAgentRepository, IAssistantProvider
from .manage_assistants import delete_remote_best_effort
from .remote import RemoteCallPolicy

logger = logging.getLogger(__name__)


class TeardownUserAgentUseCase:
    """Remove the assistant and knowledge store owned by a user.

    Remote deletion is best-effort; local records are always removed so the
    account deletion can proceed.
    """

    def __init__(
        self,
        agent_repo: IAgentRepository,
        provider: IAssistantProvider,
        policy: RemoteCallPolicy,
        activity_sink: Optional[IActivitySink] = None,
    ):
        self.repo = agent_repo
        self.provider = provider
        self.policy = policy
        self.activity = activity_sink

    async def execute(self, user_id: int) -> DeleteResult:
        """
        Raises:
            NotFoundError: If the user does not exist
        """
        agent = await self.repo.get_user_agent(user_id)
        result = DeleteResult(resource_id=str(user_id))

        assistant = agent.assistant
        if assistant is not None and assistant.owner_id == user_id:
            await self.repo.set_assistant_status(assistant.id, AgentStatus.DELETING)
            outcome = await delete_remote_best_effort(
                self.policy, "delete_assistant", self.provider.delete_assistant, assistant.id
            )
            self._merge(result, outcome)
            await self.repo.delete_assistant(assistant.id)

        store = agent.store
        if store is not None and store.owner_id == user_id:
            if await self.repo.count_assistants_using_store(store.id):
                message = f"Knowledge store {store.id} is still referenced, kept"
                logger.warning(message)
                result.warnings.append(message)
            else:
                outcome = await delete_remote_best_effort(
                    self.policy,
                    "delete_knowledge_store",
                    self.provider.delete_knowledge_store,
                    store.id,
                )
                self._merge(result, outcome)
                await self.repo.delete_store(store.id)

        logger.info(f"Tore down agent of user {user_id} ({len(result.warnings)} warnings)")
        await record_activity(
            self.activity,
            user_id,
            "agent.teardown",
            {"remote_deleted": result.remote_deleted, "warnings": len(result.warnings)},
        )
        return result

    @staticmethod
    def _merge(result: DeleteResult, outcome: DeleteResult) -> None:
        result.remote_deleted = result.remote_deleted and outcome.remote_deleted
        result.warnings.extend(outcome.warnings)


class ReconcileAgentsUseCase:
    """Clean up after interrupted provisioning and deletion.

    Example:
        result = await ReconcileAgentsUseCase(repo, provider, policy).execute(
            stale_after_seconds=900
        )
    """

    def __init__(
        self,
        agent_repo: IAgentRepository,
        provider: IAssistantProvider,
        policy: RemoteCallPolicy,
    ):
        self.repo = agent_repo
        self.provider = provider
        self.policy = policy

    async def execute(self, stale_after_seconds: float = 900.0) -> ReconcileResult:
        result = ReconcileResult()

        records = await self.repo.list_reconcilable_provisions(stale_after_seconds)
        logger.info(f"Reconciling {len(records)} provisioning record(s)")
        for record in records:
            result.examined += 1
            try:
                clean = True
                if record.assistant_id and await self.repo.get_assistant(record.assistant_id) is None:
                    outcome = await delete_remote_best_effort(
                        self.policy,
                        "delete_assistant",
                        self.provider.delete_assistant,
                        record.assistant_id,
                    )
                    clean &= outcome.remote_deleted
                    if outcome.remote_deleted:
                        result.deleted_remote.append(record.assistant_id)
                if record.store_id and await self.repo.get_store(record.store_id) is None:
                    outcome = await delete_remote_best_effort(
                        self.policy,
                        "delete_knowledge_store",
                        self.provider.delete_knowledge_store,
                        record.store_id,
                    )
                    clean &= outcome.remote_deleted
                    if outcome.remote_deleted:
                        result.deleted_remote.append(record.store_id)

                if clean:
                    await self.repo.abandon_provision(record.id)
                    result.cleaned += 1
                else:
                    result.failures.append((str(record.id), "remote cleanup incomplete"))
            except Exception as e:
                logger.error(f"Reconciling provision {record.id} failed: {e}")
                result.failures.append((str(record.id), str(e)))

        cutoff = datetime.now(timezone.utc) - timedelta(seconds=stale_after_seconds)
        updating = await self.repo.list_assistants_by_status(AgentStatus.UPDATING)
        for assistant in updating:
            if assistant.updated_at and assistant.updated_at > cutoff:
                continue
            result.examined += 1
            try:
                remote = await self.policy.call(
                    "retrieve_assistant", self.provider.retrieve_assistant, assistant.id
                )
            except NotFoundError:
                # Gone remotely; the deletion sweep below removes the record
                logger.warning(f"Assistant {assistant.id} no longer exists remotely")
                await self.repo.set_assistant_status(assistant.id, AgentStatus.DELETING)
                continue
            except Exception as e:
                logger.error(f"Reading remote state of {assistant.id} failed: {e}")
                result.failures.append((assistant.id, str(e)))
                continue
            try:
                await self.repo.update_assistant_fields(assistant.id, remote.present_fields())
                result.synced.append(assistant.id)
                result.cleaned += 1
            except Exception as e:
                logger.error(f"Syncing {assistant.id} from the provider failed: {e}")
                result.failures.append((assistant.id, str(e)))

        stuck = await self.repo.list_assistants_by_status(AgentStatus.DELETING)
        for assistant in stuck:
            result.examined += 1
            try:
                outcome = await delete_remote_best_effort(
                    self.policy,
                    "delete_assistant",
                    self.provider.delete_assistant,
                    assistant.id,
                )
                if not outcome.remote_deleted:
                    result.failures.append((assistant.id, "; ".join(outcome.warnings)))
                    continue
                await self.repo.delete_assistant(assistant.id)
                result.deleted_remote.append(assistant.id)
                result.cleaned += 1
            except Exception as e:
                logger.error(f"Finishing deletion of {assistant.id} failed: {e}")
                result.failures.append((assistant.id, str(e)))

        logger.info(
            f"Reconciliation done: {result.cleaned}/{result.examined} cleaned, "
            f"{len(result.failures)} failures"
        )
        return result
