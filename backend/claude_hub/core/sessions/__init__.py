"""
Sessions
========

Components:
- manager: SessionManager (lifecycle, dependency graph, event-driven start)
- strategies: dependency-resolution modes
- orchestration: TaskDecomposer and Orchestrator
"""
