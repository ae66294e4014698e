"""
Agent execution
===============

Components:
- security: SecurityProfile from configuration
- prompts: instruction text per operation type
- executor: ContainerExecutor (docker run with lifetime, recovery, cleanup)
- commands: CommandProcessor (request -> sanitized output + artifact)
"""
