"""
Prompt template tests.
"""

from claude_hub.core.execution.prompts import (
    PromptContext,
    build_prompt,
    build_review_request,
    build_session_command,
)
from claude_hub.core.models import OperationType, ProjectInfo, Session, SessionType


class TestBuildPrompt:
    def test_auto_tagging(self):
        prompt = build_prompt(
            OperationType.AUTO_TAGGING,
            PromptContext(repo_full_name="octo/repo", command="Title: Crash\nDescription: boom", issue_number=12),
        )

        assert "Repository: octo/repo" in prompt
        assert "gh issue edit 12" in prompt
        assert prompt.index("Title: Crash") > prompt.index("**User Request:**")

    def test_default_issue(self):
        prompt = build_prompt(
            OperationType.DEFAULT,
            PromptContext(repo_full_name="octo/repo", command="fix it", issue_number=3),
        )

        assert "responding to a GitHub issue" in prompt
        assert "Issue Number: #3" in prompt
        assert "Current Branch: main" in prompt
        assert "fix it" in prompt

    def test_default_pull_request(self):
        prompt = build_prompt(
            OperationType.DEFAULT,
            PromptContext(
                repo_full_name="octo/repo",
                command="rebase",
                issue_number=5,
                is_pull_request=True,
                branch_name="feature/x",
                bot_username="HubBot",
            ),
        )

        assert "responding to a GitHub pull request via the HubBot webhook" in prompt
        assert "Pull Request Number: #5" in prompt
        assert "Current Branch: feature/x" in prompt

    def test_rendered_upstream_passes_through(self):
        context = PromptContext(repo_full_name="octo/repo", command="already rendered {braces}")

        assert build_prompt(OperationType.PR_REVIEW, context) == "already rendered {braces}"
        assert build_prompt(OperationType.SESSION, context) == "already rendered {braces}"

    def test_command_braces_are_not_formatted(self):
        prompt = build_prompt(
            OperationType.DEFAULT,
            PromptContext(repo_full_name="octo/repo", command="print({x})"),
        )

        assert "print({x})" in prompt


class TestReviewRequest:
    def test_marker_and_context(self):
        request = build_review_request(9, "octo/repo", "ghi789")

        assert "Reviewed at commit: ghi789" in request
        assert "gh pr diff 9" in request
        assert "PR #9 in repository octo/repo" in request


class TestSessionCommand:
    def make(self, type_: SessionType, context=None) -> Session:
        project = ProjectInfo(repository="octo/repo", requirements="a todo API", context=context)
        return Session(id="s1", type=type_, project=project)

    def test_each_type(self):
        assert build_session_command(self.make(SessionType.ANALYSIS)).startswith("Analyze the project octo/repo")
        assert build_session_command(self.make(SessionType.TESTING)) == (
            "Write comprehensive tests for the implementation in octo/repo"
        )
        assert build_session_command(self.make(SessionType.REVIEW)).startswith("Review the code changes")
        assert "a todo API" in build_session_command(self.make(SessionType.COORDINATION))

    def test_implementation_includes_context(self):
        assert build_session_command(self.make(SessionType.IMPLEMENTATION)) == (
            "Implement the following in octo/repo: a todo API."
        )
        assert build_session_command(self.make(SessionType.IMPLEMENTATION, context="Use FastAPI")).endswith(
            "Use FastAPI"
        )
