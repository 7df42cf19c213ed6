"""Client modules for upstream provider integrations."""

from .ai_client import (
    ChatCompletionClient,
    Completion,
    create_groq_client,
    create_openai_client,
)
from .figma_client import FigmaClient, create_figma_client
from .github_client import GitHubClient, create_github_client

__all__ = [
    "ChatCompletionClient",
    "Completion",
    "FigmaClient",
    "GitHubClient",
    "create_figma_client",
    "create_github_client",
    "create_groq_client",
    "create_openai_client",
]
