"""
OpenAI Assistants Provider.

Implements the IAssistantProvider interface over the OpenAI Assistants API
(assistants, vector stores and files).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, BinaryIO, Iterator, Optional

import openai
from openai import AsyncOpenAI

from ...core.exceptions import (
    ConfigurationError,
    NotFoundError,
    RemoteProviderError,
    RemoteTimeoutError,
    RemoteUnavailableError,
)
from ..domain.entities import AssistantUpdate
from ..domain.ports import IAssistantProvider

logger = logging.getLogger(__name__)

ASSISTANT_TOOLS = [
    {"type": "file_search"},
    {"type": "code_interpreter"},
]


@dataclass
class OpenAIProviderConfig:
    """Configuration for the OpenAI client.

    Attributes:
        api_key: API key
        base_url: Optional API base URL override
        timeout: Client-level request timeout in seconds
        max_retries: SDK-level retries (the orchestrator retries on top)
        store_expiry_days: Vector stores expire after this many idle days
    """

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 0
    store_expiry_days: int = 90


@contextmanager
def _provider_errors(
    operation: str,
    resource_type: str,
    resource_id: Optional[str] = None,
) -> Iterator[None]:
    """Translate OpenAI SDK exceptions into core exceptions."""
    try:
        yield
    except openai.NotFoundError as e:
        raise NotFoundError(resource_type, resource_id, cause=e)
    except openai.RateLimitError as e:
        logger.warning(f"OpenAI rate limit during {operation}: {e}")
        retry_after = None
        if e.response is not None:
            header = e.response.headers.get("retry-after")
            try:
                retry_after = float(header) if header else None
            except ValueError:
                retry_after = None
        raise RemoteUnavailableError(
            f"Rate limited during {operation}",
            operation=operation,
            status_code=429,
            retry_after=retry_after,
            cause=e,
        )
    except openai.APITimeoutError as e:
        raise RemoteTimeoutError(
            f"OpenAI request timed out during {operation}",
            operation=operation,
            cause=e,
        )
    except openai.APIConnectionError as e:
        raise RemoteUnavailableError(
            f"Could not reach OpenAI during {operation}: {e}",
            operation=operation,
            cause=e,
        )
    except openai.APIStatusError as e:
        if e.status_code >= 500:
            raise RemoteUnavailableError(
                f"OpenAI server error during {operation}: {e.message}",
                operation=operation,
                status_code=e.status_code,
                cause=e,
            )
        raise RemoteProviderError(
            f"OpenAI rejected {operation}: {e.message}",
            operation=operation,
            status_code=e.status_code,
            cause=e,
        )
    except openai.APIError as e:
        raise RemoteProviderError(
            f"OpenAI error during {operation}: {e}",
            operation=operation,
            cause=e,
        )


def _tool_resources(store_id: Optional[str]) -> dict[str, Any]:
    return {"file_search": {"vector_store_ids": [store_id] if store_id else []}}


class OpenAIAssistantProvider(IAssistantProvider):
    """OpenAI implementation of the assistant provider port.

    Assistants are created with file search and code interpreter tools,
    searching at most one vector store.

    Usage:
        provider = OpenAIAssistantProvider(OpenAIProviderConfig(api_key="sk-..."))
        store_id = await provider.create_knowledge_store("Lisa Knowledge Base")
        assistant_id = await provider.create_assistant(
            "Lisa Assistant", instructions, "gpt-4-1106-preview", store_id
        )
    """

    def __init__(
        self,
        config: OpenAIProviderConfig,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None and not config.api_key:
            raise ConfigurationError(
                "OpenAI API key is required",
                missing_keys=["OPENAI_API_KEY"],
            )
        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    # ------------------------------------------------------------------
    # Assistants
    # ------------------------------------------------------------------

    async def create_assistant(
        self,
        name: str,
        instructions: str,
        model: str,
        store_id: Optional[str] = None,
    ) -> str:
        with _provider_errors("create_assistant", "Assistant"):
            assistant = await self.client.beta.assistants.create(
                name=name,
                instructions=instructions,
                model=model,
                tools=ASSISTANT_TOOLS,
                tool_resources=_tool_resources(store_id),
            )
        logger.info(f"Created OpenAI assistant {assistant.id}")
        return assistant.id

    async def retrieve_assistant(self, assistant_id: str) -> AssistantUpdate:
        with _provider_errors("retrieve_assistant", "Assistant", assistant_id):
            assistant = await self.client.beta.assistants.retrieve(assistant_id)

        store_ids: list[str] = []
        resources = assistant.tool_resources
        if resources is not None and resources.file_search is not None:
            store_ids = resources.file_search.vector_store_ids or []
        return AssistantUpdate(
            name=assistant.name or "",
            instructions=assistant.instructions or "",
            model=assistant.model,
            store_id=store_ids[0] if store_ids else None,
        )

    async def update_assistant(self, assistant_id: str, fields: dict[str, Any]) -> None:
        params: dict[str, Any] = {}
        for key in ("name", "instructions", "model"):
            if key in fields:
                params[key] = fields[key]
        if "store_id" in fields:
            params["tool_resources"] = _tool_resources(fields["store_id"])

        with _provider_errors("update_assistant", "Assistant", assistant_id):
            await self.client.beta.assistants.update(assistant_id, **params)
        logger.debug(f"Updated OpenAI assistant {assistant_id}: {sorted(params)}")

    async def delete_assistant(self, assistant_id: str) -> None:
        with _provider_errors("delete_assistant", "Assistant", assistant_id):
            await self.client.beta.assistants.delete(assistant_id)
        logger.info(f"Deleted OpenAI assistant {assistant_id}")

    # ------------------------------------------------------------------
    # Vector stores
    # ------------------------------------------------------------------

    async def create_knowledge_store(self, name: str) -> str:
        with _provider_errors("create_knowledge_store", "KnowledgeStore"):
            store = await self.client.vector_stores.create(
                name=name,
                expires_after={
                    "anchor": "last_active_at",
                    "days": self.config.store_expiry_days,
                },
            )
        logger.info(f"Created OpenAI vector store {store.id}")
        return store.id

    async def delete_knowledge_store(self, store_id: str) -> None:
        with _provider_errors("delete_knowledge_store", "KnowledgeStore", store_id):
            await self.client.vector_stores.delete(store_id)
        logger.info(f"Deleted OpenAI vector store {store_id}")

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def upload_document(self, stream: BinaryIO, filename: str) -> str:
        with _provider_errors("upload_document", "Document"):
            uploaded = await self.client.files.create(
                file=(filename, stream),
                purpose="assistants",
            )
        return uploaded.id

    async def attach_document(self, store_id: str, document_id: str) -> None:
        with _provider_errors("attach_document", "KnowledgeStore", store_id):
            await self.client.vector_stores.files.create(
                vector_store_id=store_id,
                file_id=document_id,
            )

    async def detach_document(self, store_id: str, document_id: str) -> None:
        with _provider_errors("detach_document", "Document", document_id):
            await self.client.vector_stores.files.delete(
                document_id,
                vector_store_id=store_id,
            )

    async def delete_document(self, document_id: str) -> None:
        with _provider_errors("delete_document", "Document", document_id):
            await self.client.files.delete(document_id)

    async def list_documents(self, store_id: str) -> list[str]:
        document_ids: list[str] = []
        with _provider_errors("list_documents", "KnowledgeStore", store_id):
            async for item in self.client.vector_stores.files.list(
                vector_store_id=store_id,
                limit=100,
            ):
                document_ids.append(item.id)
        return document_ids
