"""
Event routing tests.

GitHub events go through the real processor and reviewer with a fake
container engine and a mocked repository host.
"""

import asyncio

import httpx
import pytest

from claude_hub.core.exceptions import SessionNotFound, ValidationError
from claude_hub.core.execution.executor import ProcessResult
from claude_hub.core.models import SessionStatus
from claude_hub.core.router import fallback_labels
from claude_hub.core.schemas import ClaudeWebhookRequest

REPOSITORY = {"full_name": "octo/repo", "name": "repo", "owner": {"login": "octo"}}


def issue_opened(title="App crashes on login", body="Server error when I submit") -> dict:
    return {
        "action": "opened",
        "repository": REPOSITORY,
        "issue": {"number": 12, "title": title, "body": body},
    }


def comment_created(body: str, login: str = "octocat", pull_request: bool = False) -> dict:
    issue = {"number": 4, "title": "Broken build"}
    if pull_request:
        issue["pull_request"] = {"url": "https://api.github.com/repos/octo/repo/pulls/4"}
    return {
        "action": "created",
        "repository": REPOSITORY,
        "issue": issue,
        "comment": {"id": 99, "body": body, "user": {"login": login}},
    }


def claude_request(**data) -> ClaudeWebhookRequest:
    return ClaudeWebhookRequest.model_validate(data)


def session_body(session_id: str, deps=()) -> dict:
    return {
        "id": session_id,
        "type": "implementation",
        "project": {"repository": "octo/repo", "requirements": "Build the API"},
        "dependencies": list(deps),
    }


# ==========================================================================
# Fallback labels
# ==========================================================================

class TestFallbackLabels:
    def test_bug_on_backend(self):
        assert fallback_labels("App crashes on login", "Server error when I submit") == [
            "type:bug",
            "priority:medium",
            "component:backend",
        ]

    def test_critical_priority(self):
        assert fallback_labels("Security issue in API", None) == [
            "type:bug",
            "priority:critical",
            "component:api",
        ]

    def test_question_without_component(self):
        assert fallback_labels("How do I configure this?", None) == ["type:question", "priority:medium"]


# ==========================================================================
# GitHub events
# ==========================================================================

class TestIssueOpened:
    async def test_agent_tagging_succeeds(self, event_router, host, runner):
        result = await event_router.route_github("issues", issue_opened())

        assert result.handled is True
        assert result.message == "Issue auto-tagged successfully"
        run = runner.commands("run")[0]
        assert "OPERATION_TYPE=auto-tagging" in run
        assert "ISSUE_NUMBER=12" in run
        host.add_labels.assert_not_awaited()

    async def test_failure_output_applies_fallback_labels(self, event_router, host, runner):
        runner.default_result = ProcessResult(0, "Labeling failed: gh not authenticated", "")

        result = await event_router.route_github("issues", issue_opened())

        assert result.message == "Issue tagged with fallback labels"
        host.add_labels.assert_awaited_once_with(
            "octo", "repo", 12, ["type:bug", "priority:medium", "component:backend"],
        )

    async def test_execution_failure_applies_fallback_labels(self, event_router, host, runner):
        runner.default_result = ProcessResult(1, "", "container crashed")

        result = await event_router.route_github("issues", issue_opened())

        assert result.data["labels"] == ["type:bug", "priority:medium", "component:backend"]
        host.add_labels.assert_awaited_once()

    async def test_label_api_failure_is_reported(self, event_router, host, runner):
        runner.default_result = ProcessResult(1, "", "container crashed")
        host.add_labels.side_effect = httpx.ConnectError("unreachable")

        result = await event_router.route_github("issues", issue_opened())

        assert result.handled is True
        assert result.message == "Auto-tagging failed"

    async def test_missing_repository(self, event_router):
        payload = issue_opened()
        del payload["repository"]

        with pytest.raises(ValidationError):
            await event_router.route_github("issues", payload)


class TestCommentCreated:
    async def test_authorized_command_posts_reply(self, event_router, host, runner):
        runner.default_result = ProcessResult(0, "Fixed it. Ping @ClaudeBot again if needed.", "")

        result = await event_router.route_github("issue_comment", comment_created("@ClaudeBot please fix the build"))

        assert result.handled is True
        assert result.data["type"] == "issue_comment"
        run = runner.commands("run")[0]
        assert "IS_PULL_REQUEST=false" in run
        assert any(a.startswith("COMMAND=") and "please fix the build" in a for a in run)
        host.post_comment.assert_awaited_once_with("octo", "repo", 4, "Fixed it. Ping ClaudeBot again if needed.")

    async def test_unauthorized_user_gets_refusal(self, event_router, host, runner):
        result = await event_router.route_github("issue_comment", comment_created("@ClaudeBot deploy", login="mallory"))

        assert result.message == "Unauthorized user - command ignored"
        assert runner.commands("run") == []
        body = host.post_comment.await_args.args[3]
        assert "@mallory" in body
        assert "only authorized users" in body

    async def test_comment_without_mention_is_ignored(self, event_router, host, runner):
        result = await event_router.route_github("issue_comment", comment_created("looks good to me"))

        assert result.handled is False
        assert runner.commands("run") == []
        host.post_comment.assert_not_awaited()

    async def test_bare_mention_is_ignored(self, event_router, runner):
        result = await event_router.route_github("issue_comment", comment_created("@ClaudeBot   "))

        assert result.handled is False

    async def test_own_comment_is_ignored(self, event_router, runner):
        result = await event_router.route_github(
            "issue_comment", comment_created("@ClaudeBot do it again", login="ClaudeBot"),
        )

        assert result.message == "Comment from bot ignored"
        assert runner.commands("run") == []

    async def test_failure_posts_error_reference(self, event_router, host, runner):
        runner.default_result = ProcessResult(1, "", "fatal: container crashed")

        result = await event_router.route_github("issue_comment", comment_created("@ClaudeBot fix"))

        reference = result.data["errorReference"]
        body = host.post_comment.await_args.args[3]
        assert f"Reference: {reference}" in body
        assert "fatal" not in body

    async def test_pull_request_comment(self, event_router, runner):
        result = await event_router.route_github(
            "issue_comment", comment_created("@claudebot review please", pull_request=True),
        )

        assert result.data["type"] == "pull_request"
        assert "IS_PULL_REQUEST=true" in runner.commands("run")[0]

    async def test_review_comment_uses_head_branch(self, event_router, host, runner):
        payload = {
            "action": "created",
            "repository": REPOSITORY,
            "pull_request": {"number": 8, "head": {"ref": "feature/login", "sha": "abc123"}},
            "comment": {"id": 5, "body": "@ClaudeBot rename this", "user": {"login": "hubot"}},
        }

        result = await event_router.route_github("pull_request_review_comment", payload)

        assert result.data["branch"] == "feature/login"
        run = runner.commands("run")[0]
        assert "BRANCH_NAME=feature/login" in run
        assert "ISSUE_NUMBER=8" in run
        host.post_comment.assert_awaited_once()


class TestCheckSuiteAndOthers:
    async def test_completed_check_suite_triggers_review(self, event_router, host, runner):
        payload = {
            "action": "completed",
            "repository": REPOSITORY,
            "check_suite": {
                "id": 100,
                "app": {"name": "GitHub Actions"},
                "status": "completed",
                "conclusion": "success",
                "head_sha": "ghi789",
                "pull_requests": [{"number": 9, "head": {"sha": "ghi789", "ref": "feature/x"}}],
            },
        }

        result = await event_router.route_github("check_suite", payload)

        assert result.handled is True
        assert result.message == "1 reviewed, 0 failed, 0 skipped"
        assert "OPERATION_TYPE=pr-review" in runner.commands("run")[0]

    async def test_missing_check_suite(self, event_router):
        with pytest.raises(ValidationError):
            await event_router.route_github("check_suite", {"action": "completed", "repository": REPOSITORY})

    @pytest.mark.parametrize(
        "event,action",
        [("push", None), ("issues", "closed"), ("check_suite", "requested"), ("issue_comment", "edited")],
    )
    async def test_other_events_are_ignored(self, event_router, runner, event, action):
        result = await event_router.route_github(event, {"action": action, "repository": REPOSITORY})

        assert result.handled is False
        assert result.message == "Event ignored"
        assert runner.calls == []


# ==========================================================================
# Claude API events
# ==========================================================================

class TestClaudeEvents:
    async def test_orchestrate(self, event_router, manager):
        result = await event_router.route_claude(claude_request(
            type="orchestrate",
            project={"repository": "octo/repo", "requirements": "Add an api endpoint"},
            strategy={"dependencyMode": "parallel", "phases": ["analysis", "implementation"]},
        ))

        assert result.data["mode"] == "parallel"
        assert [s["type"] for s in result.data["sessions"]] == ["analysis", "implementation"]
        assert len(manager) == 2

    async def test_orchestrate_requires_project(self, event_router):
        with pytest.raises(ValidationError):
            await event_router.route_claude(claude_request(type="orchestrate"))

    async def test_session_create_and_get(self, event_router):
        created = await event_router.route_claude(claude_request(type="session.create", session=session_body("s1")))
        fetched = await event_router.route_claude(claude_request(type="session.get", sessionId="s1"))

        assert created.data["session"]["status"] == "initializing"
        assert created.data["session"]["containerId"] == "claude-implementation-s1"
        assert fetched.data["session"]["id"] == "s1"

    async def test_session_create_generates_id(self, event_router):
        body = session_body("s1")
        del body["id"]

        result = await event_router.route_claude(claude_request(type="session.create", session=body))

        assert len(result.data["session"]["id"]) == 36

    async def test_session_list(self, event_router):
        await event_router.route_claude(claude_request(type="session.create", session=session_body("s1")))
        await event_router.route_claude(claude_request(type="session.create", session=session_body("s2")))

        result = await event_router.route_claude(claude_request(type="session.list"))

        assert result.message == "Found 2 sessions"

    async def test_start_queues_behind_dependency(self, event_router, manager, runner):
        runner.gates["claude-implementation-a"] = asyncio.Event()
        await event_router.route_claude(claude_request(type="session.create", session=session_body("a")))
        await event_router.route_claude(claude_request(type="session.create", session=session_body("b", deps=["a"])))

        result = await event_router.route_claude(claude_request(type="session.start", sessionId="b"))

        assert result.message == "Session queued, waiting for dependencies"
        assert result.data["waitingFor"] == ["a"]
        assert manager.get("b").status == SessionStatus.QUEUED

    async def test_start_and_output(self, event_router, manager, runner):
        runner.default_result = ProcessResult(0, "Created file: app.py\nSummary: Scaffolded", "")
        await event_router.route_claude(claude_request(type="session.create", session=session_body("s1")))

        started = await event_router.route_claude(claude_request(type="session.start", sessionId="s1"))
        await manager.wait("s1", timeout=2)
        output = await event_router.route_claude(claude_request(type="session.output", sessionId="s1"))

        assert started.message == "Session started"
        assert output.data["status"] == "completed"
        assert output.data["output"]["summary"] == "Scaffolded"
        assert output.data["output"]["artifacts"][0]["path"] == "app.py"

    async def test_stop(self, event_router, runner):
        runner.gates["claude-implementation-s1"] = asyncio.Event()
        await event_router.route_claude(claude_request(type="session.create", session=session_body("s1")))
        await event_router.route_claude(claude_request(type="session.start", sessionId="s1"))
        await asyncio.sleep(0)

        result = await event_router.route_claude(claude_request(type="session.stop", sessionId="s1"))

        assert result.data["session"]["status"] == "stopped"

    async def test_session_id_required(self, event_router):
        with pytest.raises(ValidationError):
            await event_router.route_claude(claude_request(type="session.get"))

    async def test_unknown_session(self, event_router):
        with pytest.raises(SessionNotFound):
            await event_router.route_claude(claude_request(type="session.get", sessionId="missing"))

    async def test_unknown_type(self, event_router):
        with pytest.raises(ValidationError) as exc:
            await event_router.route_claude(claude_request(type="session.explode"))

        assert exc.value.field == "type"
