"""Assistant management use cases: create, update, delete, assign.

Remote first, local second. A remote failure never reaches local
persistence; a remote failure during delete is reported as a warning and
the local record is removed anyway.
"""

import logging
from typing import Optional

from ...core.context import IActivitySink, record_activity
from ...core.exceptions import ConflictError, NotFoundError, ValidationError
from ..domain.entities import (
    AgentStatus,
    Assistant,
    AssistantUpdate,
    DeleteResult,
)
from ..domain.ports import IAgentRepository, IAssistantProvider
from .remote import RemoteCallPolicy

logger = logging.getLogger(__name__)


class CreateAssistantUseCase:
    """Create a shared assistant, optionally searching an existing store."""

    def __init__(
        self,
        agent_repo: IAgentRepository,
        provider: IAssistantProvider,
        policy: RemoteCallPolicy,
        default_instructions: str,
        default_model: str,
    ):
        self.repo = agent_repo
        self.provider = provider
        self.policy = policy
        self.default_instructions = default_instructions
        self.default_model = default_model

    async def execute(
        self,
        name: str,
        instructions: Optional[str] = None,
        model: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> Assistant:
        """
        Raises:
            ValidationError: If name is blank
            NotFoundError: If store_id does not match a local knowledge store
            RemoteProviderError: If the remote create fails
        """
        if not name or not name.strip():
            raise ValidationError("Assistant name is required", field="name")
        if store_id and await self.repo.get_store(store_id) is None:
            raise NotFoundError("KnowledgeStore", store_id)

        assistant = Assistant(
            id="",
            name=name.strip(),
            instructions=instructions if instructions is not None else self.default_instructions,
            model=model or self.default_model,
            store_id=store_id or None,
        )
        assistant.id = await self.policy.call(
            "create_assistant",
            self.provider.create_assistant,
            assistant.name,
            assistant.instructions,
            assistant.model,
            assistant.store_id,
            retry=False,
        )

        try:
            await self.repo.insert_assistant(assistant)
        except Exception:
            logger.error(f"Saving assistant {assistant.id} failed, deleting it remotely")
            try:
                await self.policy.call(
                    "delete_assistant", self.provider.delete_assistant, assistant.id
                )
            except Exception as cleanup_error:
                logger.error(
                    f"Orphaned remote assistant {assistant.id}: {cleanup_error}"
                )
            raise

        logger.info(f"Created shared assistant {assistant.id} ({assistant.name})")
        return assistant


class UpdateAssistantUseCase:
    """Apply a partial update: provider first, local record after."""

    def __init__(
        self,
        agent_repo: IAgentRepository,
        provider: IAssistantProvider,
        policy: RemoteCallPolicy,
    ):
        self.repo = agent_repo
        self.provider = provider
        self.policy = policy

    async def execute(self, assistant_id: str, update: AssistantUpdate) -> Assistant:
        """
        Raises:
            ValidationError: If the update is empty or a value is invalid
            NotFoundError: If no local record (or referenced store) exists
            ConflictError: If the assistant is being deleted
            RemoteProviderError: If the remote update fails; the local
                record is left unchanged
        """
        if update.is_empty:
            raise ValidationError("No fields to update")
        fields = update.present_fields()
        self._validate(fields)

        assistant = await self.repo.get_assistant(assistant_id)
        if assistant is None:
            raise NotFoundError("Assistant", assistant_id)
        if assistant.status == AgentStatus.DELETING:
            raise ConflictError(
                f"Assistant '{assistant_id}' is being deleted",
                resource_type="Assistant",
                resource_id=assistant_id,
            )
        if fields.get("store_id") and await self.repo.get_store(fields["store_id"]) is None:
            raise NotFoundError("KnowledgeStore", fields["store_id"])

        await self.repo.set_assistant_status(assistant_id, AgentStatus.UPDATING)
        try:
            await self.policy.call(
                "update_assistant", self.provider.update_assistant, assistant_id, fields
            )
        except BaseException:
            try:
                await self.repo.set_assistant_status(assistant_id, AgentStatus.ACTIVE)
            except Exception as e:
                logger.error(f"Could not restore status of {assistant_id}: {e}")
            raise

        try:
            updated = await self.repo.update_assistant_fields(assistant_id, fields)
        except Exception:
            logger.error(
                f"Assistant {assistant_id} changed remotely but not locally; "
                "it stays updating until reconcile copies the remote state"
            )
            raise
        logger.info(f"Updated assistant {assistant_id}: {sorted(fields)}")
        return updated

    @staticmethod
    def _validate(fields: dict) -> None:
        for key in ("name", "model"):
            if key in fields and (not isinstance(fields[key], str) or not fields[key].strip()):
                raise ValidationError(f"{key} cannot be empty", field=key)
        if "instructions" in fields and not isinstance(fields["instructions"], str):
            raise ValidationError("instructions must be text", field="instructions")
        if "store_id" in fields and fields["store_id"] is not None:
            if not isinstance(fields["store_id"], str) or not fields["store_id"].strip():
                raise ValidationError("store_id must be a store id or None", field="store_id")


class DeleteAssistantUseCase:
    """Delete an assistant; remote deletion is best-effort."""

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

    async def execute(self, assistant_id: str) -> DeleteResult:
        """
        Returns:
            DeleteResult; ``remote_deleted`` is False and ``warnings`` is
            populated when the provider call failed

        Raises:
            NotFoundError: If no local record matches assistant_id
        """
        assistant = await self.repo.get_assistant(assistant_id)
        if assistant is None:
            raise NotFoundError("Assistant", assistant_id)

        await self.repo.set_assistant_status(assistant_id, AgentStatus.DELETING)
        result = await delete_remote_best_effort(
            self.policy,
            "delete_assistant",
            self.provider.delete_assistant,
            assistant_id,
        )
        await self.repo.delete_assistant(assistant_id)

        logger.info(
            f"Deleted assistant {assistant_id}"
            + ("" if result.remote_deleted else " (remote deletion failed)")
        )
        await record_activity(
            self.activity,
            assistant.owner_id,
            "assistant.deleted",
            {"assistant_id": assistant_id, "remote_deleted": result.remote_deleted},
        )
        return result


class AssignAssistantUseCase:
    """Point a user at an existing assistant."""

    def __init__(self, agent_repo: IAgentRepository):
        self.repo = agent_repo

    async def execute(self, user_id: int, assistant_id: str) -> Assistant:
        assistant = await self.repo.get_assistant(assistant_id)
        if assistant is None:
            raise NotFoundError("Assistant", assistant_id)
        if await self.repo.get_user(user_id) is None:
            raise NotFoundError("User", user_id)
        await self.repo.set_user_assistant(user_id, assistant_id)
        logger.info(f"Assigned assistant {assistant_id} to user {user_id}")
        return assistant


async def delete_remote_best_effort(
    policy: RemoteCallPolicy,
    operation: str,
    func,
    resource_id: str,
) -> DeleteResult:
    """Delete a remote resource, turning failures into warnings.

    A provider "not found" counts as deleted.
    """
    result = DeleteResult(resource_id=resource_id)
    try:
        await policy.call(operation, func, resource_id)
    except NotFoundError:
        logger.info(f"{operation}: {resource_id} was already gone remotely")
    except Exception as e:
        message = f"Remote {operation} failed for {resource_id}: {e}"
        logger.warning(message)
        result.remote_deleted = False
        result.warnings.append(message)
    return result
