"""
Claude Hub - Core Package
=========================

Execution, review decisions, sessions and the shared models.
"""

from claude_hub.core.config import settings

__all__ = ["settings"]
