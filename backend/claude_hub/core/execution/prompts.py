"""
Agent instruction templates.

The template text is opaque to the rest of the service; callers select a
template by operation type and pass repository context.
"""

from dataclasses import dataclass
from typing import Optional

from claude_hub.core.models import OperationType, Session, SessionType

REVIEW_MARKER = "Reviewed at commit: {sha}"


@dataclass
class PromptContext:
    repo_full_name: str
    command: str
    issue_number: Optional[int] = None
    is_pull_request: bool = False
    branch_name: Optional[str] = None
    bot_username: str = "ClaudeBot"


_AUTO_TAGGING = """You are Claude, an AI assistant analyzing a GitHub issue for automatic label assignment.

**Context:**
- Repository: {repo}
- Issue Number: #{number}
- Operation: Auto-tagging (Read-only + Label assignment)

**Task:**
Analyze the issue and apply appropriate labels with the GitHub CLI. Use these categories:
- Priority: critical, high, medium, low
- Type: bug, feature, enhancement, documentation, question, security
- Complexity: trivial, simple, moderate, complex
- Component: api, frontend, backend, database, auth, webhook, docker

**Process:**
1. Run 'gh label list' to see available labels
2. Analyze the issue content
3. Run 'gh issue edit {number} --add-label "label1,label2"' to apply labels
4. Do NOT comment on the issue, only apply labels

**User Request:**
{command}

Complete the auto-tagging task using only the minimal required tools."""


_DEFAULT = """You are Claude, an AI assistant responding to a GitHub {kind} via the {bot} webhook.

**Context:**
- Repository: {repo}
- {kind_title} Number: #{number}
- Current Branch: {branch}
- Running in: Unattended mode

**Important Instructions:**
1. You have full GitHub CLI access via the 'gh' command
2. When writing code, work on a feature branch, commit with descriptive messages,
   push to the remote and open a pull request if appropriate
3. Run the tests and fix lint or type errors before finishing
4. Iterate until the task is complete; do not stop at partial solutions
5. Use 'gh issue comment' or 'gh pr comment' to report progress
6. Return clean, human-readable markdown; do not escape newlines or quotes
7. For long tasks, post a short acknowledgment comment before starting

**User Request:**
{command}

Please complete this task fully and autonomously."""


_PR_REVIEW = """# GitHub PR Review - Complete Automated Review

## Initial Setup
You are reviewing PR #{number} in {repo}. Gather context with:
- gh pr view {number} --json title,body,additions,deletions,changedFiles,files,headRefOid
- gh pr diff {number}

## Review Focus
- Security vulnerabilities (injection, XSS, auth, exposed secrets)
- Logic errors and edge cases
- Breaking changes and workflow failures
- Performance and maintainability

Use inline comments for specific issues, group related feedback, and finish with
one review event (APPROVE, REQUEST_CHANGES, or COMMENT).

Always include "{marker}" in your final review comment.

Please perform a comprehensive review of PR #{number} in repository {repo}."""


def build_prompt(operation_type: OperationType, context: PromptContext) -> str:
    """Render the instruction text for one execution."""
    number = context.issue_number if context.issue_number is not None else ""

    if operation_type == OperationType.AUTO_TAGGING:
        return _AUTO_TAGGING.format(repo=context.repo_full_name, number=number, command=context.command)

    if operation_type in (OperationType.PR_REVIEW, OperationType.SESSION):
        # Already fully rendered upstream
        return context.command

    kind = "pull request" if context.is_pull_request else "issue"
    return _DEFAULT.format(
        kind=kind,
        kind_title="Pull Request" if context.is_pull_request else "Issue",
        bot=context.bot_username,
        repo=context.repo_full_name,
        number=number,
        branch=context.branch_name or "main",
        command=context.command,
    )


def build_review_request(pr_number: int, repo_full_name: str, commit_sha: str) -> str:
    return _PR_REVIEW.format(
        number=pr_number,
        repo=repo_full_name,
        marker=REVIEW_MARKER.format(sha=commit_sha),
    )


def build_session_command(session: Session) -> str:
    """Instruction text for one orchestrated session."""
    project = session.project
    repo, requirements = project.repository, project.requirements

    if session.type == SessionType.ANALYSIS:
        return f"Analyze the project {repo} and create a detailed implementation plan for: {requirements}"
    if session.type == SessionType.IMPLEMENTATION:
        return f"Implement the following in {repo}: {requirements}. {project.context or ''}".rstrip()
    if session.type == SessionType.TESTING:
        return f"Write comprehensive tests for the implementation in {repo}"
    if session.type == SessionType.REVIEW:
        return f"Review the code changes in {repo} and provide feedback"
    if session.type == SessionType.COORDINATION:
        return f"Coordinate the implementation of {requirements} in {repo}"
    return requirements
