"""Collaborators and external services for the fix loop."""

from .storage_tool import StorageTool
from .github_tool import GitHubTool
from .agents import Fixer, Critic, ClaudeFixer, ClaudeCritic

__all__ = [
    "StorageTool",
    "GitHubTool",
    "Fixer",
    "Critic",
    "ClaudeFixer",
    "ClaudeCritic",
]
