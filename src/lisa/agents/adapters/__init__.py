"""Adapters layer - OpenAI and PostgreSQL implementations of the agent ports."""

from .openai_provider import OpenAIAssistantProvider, OpenAIProviderConfig
from .postgres_agent_repo import PostgresAgentRepository

__all__ = [
    "OpenAIAssistantProvider",
    "OpenAIProviderConfig",
    "PostgresAgentRepository",
]
