"""
Claude Hub
==========

Webhook-driven orchestration of containerized coding agent runs.
"""

__version__ = "0.1.0"
