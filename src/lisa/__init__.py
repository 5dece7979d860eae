"""Lisa support-chatbot core.

Two components sit behind the HTTP layer:
    agents/         - Agent Lifecycle Orchestrator (assistants, knowledge stores, documents)
    conversations/  - Conversation Store (chat history persistence, search, export)
"""

__version__ = "0.1.0"
