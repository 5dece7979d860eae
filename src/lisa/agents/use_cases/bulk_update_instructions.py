"""Bulk Update Instructions Use Case - push one template to every assistant.

The template is personalized per assistant ({USER_ID} becomes the owner id,
shared assistants get it unchanged) and sent with one remote update per
assistant, concurrently. Each assistant succeeds or fails on its own; the
local record is updated only after its remote update succeeded.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ...core.exceptions import ValidationError
from ...core.resilience import gather_settled
from ..domain.entities import (
    AgentStatus,
    Assistant,
    BulkUpdateResult,
    InstructionContext,
    render_instructions,
)
from ..domain.ports import IAgentRepository, IAssistantProvider
from .remote import RemoteCallPolicy

logger = logging.getLogger(__name__)


class BulkUpdateInstructionsUseCase:
    """Propagate an instruction template across all assistants.

    Example:
        result = await BulkUpdateInstructionsUseCase(repo, provider, policy).execute(
            "You are Lisa. User: {USER_ID}"
        )
        print(result.updated, result.failed, result.failures)
    """

    def __init__(
        self,
        agent_repo: IAgentRepository,
        provider: IAssistantProvider,
        policy: RemoteCallPolicy,
        max_concurrent: int = 5,
        budget_seconds: Optional[float] = None,
    ):
        self.repo = agent_repo
        self.provider = provider
        self.policy = policy
        self.max_concurrent = max_concurrent
        self.budget_seconds = budget_seconds

    async def execute(self, template: str) -> BulkUpdateResult:
        """Run the bulk update.

        Raises:
            ValidationError: If the template is blank

        Returns:
            BulkUpdateResult with counts and (assistant_id, error) failures
        """
        if not template or not template.strip():
            raise ValidationError("Instructions template is required", field="template")

        started_at = datetime.now(timezone.utc)
        assistants = [
            a for a in await self.repo.list_assistants()
            if a.status != AgentStatus.DELETING
        ]
        logger.info(f"Bulk instruction update for {len(assistants)} assistants")

        async def push(assistant: Assistant) -> str:
            instructions = render_instructions(
                template, InstructionContext.for_assistant(assistant)
            )
            await self.policy.call(
                "update_assistant",
                self.provider.update_assistant,
                assistant.id,
                {"instructions": instructions},
            )
            await self.repo.update_assistant_fields(
                assistant.id, {"instructions": instructions}
            )
            return assistant.id

        outcomes = await gather_settled(
            assistants,
            push,
            max_concurrent=self.max_concurrent,
            budget_seconds=self.budget_seconds,
        )

        result = BulkUpdateResult(total=len(assistants))
        for outcome in outcomes:
            if outcome.ok:
                result.updated += 1
                result.updated_ids.append(outcome.value)
            else:
                message = getattr(outcome.error, "message", None) or str(outcome.error)
                result.failed += 1
                result.failures.append((outcome.item.id, message))
                logger.error(f"Instruction update failed for {outcome.item.id}: {message}")

        duration = (datetime.now(timezone.utc) - started_at).total_seconds()
        logger.info(
            f"Bulk instruction update completed in {duration:.2f}s: "
            f"{result.updated} updated, {result.failed} failed"
        )
        return result
