"""
Automated PR review fan-out.

One completed check suite can be attached to several pull requests. Each
PR is evaluated and reviewed independently and concurrently; a failure on
one never affects its siblings.
"""

import asyncio
from typing import Optional

import structlog

from claude_hub.core.exceptions import CommandFailed, ConfigurationError, ValidationError
from claude_hub.core.execution.commands import CommandProcessor
from claude_hub.core.execution.prompts import build_review_request
from claude_hub.core.github_client import RepositoryHost
from claude_hub.core.models import (
    CheckSuiteObservation,
    CommandRequest,
    DecisionOutcome,
    OperationType,
    PullRequestRef,
    ReviewResult,
    ReviewSummary,
)
from claude_hub.core.review.decision import ReviewDecisionEngine

logger = structlog.get_logger()

LABEL_IN_PROGRESS = "claude-review-in-progress"
LABEL_COMPLETE = "claude-review-complete"
LABEL_NEEDED = "claude-review-needed"


class AutomatedReviewer:
    """
    Runs the review pipeline for every PR attached to a check suite.

    Usage:
        reviewer = AutomatedReviewer(engine, processor, github)
        summary = await reviewer.review_check_suite("octo", "repo", suite)
    """

    def __init__(self, engine: ReviewDecisionEngine, processor: CommandProcessor, host: RepositoryHost):
        self.engine = engine
        self.processor = processor
        self.host = host

    async def review_check_suite(self, owner: str, repo: str, suite: CheckSuiteObservation) -> ReviewSummary:
        prs = suite.pull_requests
        if not prs:
            logger.warning(
                "Check suite has no pull requests, possibly from a fork",
                repo=f"{owner}/{repo}",
                check_suite=suite.id,
            )
            return ReviewSummary()

        outcomes = await asyncio.gather(
            *(self.review_pull_request(owner, repo, pr, suite) for pr in prs),
            return_exceptions=True,
        )

        results = []
        for pr, outcome in zip(prs, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Automated review crashed", repo=f"{owner}/{repo}", pr=pr.number, error=str(outcome))
                results.append(ReviewResult(pr.number, success=False, error=str(outcome) or type(outcome).__name__))
            else:
                results.append(outcome)

        summary = ReviewSummary(results)
        logger.info(
            "Automated review batch finished",
            repo=f"{owner}/{repo}",
            check_suite=suite.id,
            summary=summary.message,
        )
        return summary

    async def review_pull_request(
        self,
        owner: str,
        repo: str,
        pr: PullRequestRef,
        trigger: Optional[CheckSuiteObservation],
    ) -> ReviewResult:
        if not pr.head_sha:
            logger.error("No commit SHA available for PR", repo=f"{owner}/{repo}", pr=pr.number)
            return ReviewResult(pr.number, success=False, skipped_reason="no commit SHA available")

        decision = await self.engine.decide(owner, repo, pr, trigger)

        if decision.outcome != DecisionOutcome.TRIGGER:
            return ReviewResult(pr.number, success=False, skipped_reason=decision.reason)
        if decision.already_reviewed_at_commit:
            return ReviewResult(pr.number, success=False, skipped_reason="already reviewed at this commit")

        await self._set_labels(owner, repo, pr.number, add=LABEL_IN_PROGRESS, remove=(LABEL_NEEDED, LABEL_COMPLETE))

        request = CommandRequest(
            repo_full_name=f"{owner}/{repo}",
            command=build_review_request(pr.number, f"{owner}/{repo}", pr.head_sha),
            issue_number=pr.number,
            is_pull_request=True,
            branch_name=pr.head_ref,
            operation_type=OperationType.PR_REVIEW,
        )
        try:
            result = await self.processor.process(request)
        except (CommandFailed, ConfigurationError, ValidationError) as e:
            logger.error("Automated review failed", repo=f"{owner}/{repo}", pr=pr.number, error=str(e))
            await self._set_labels(owner, repo, pr.number, add=None, remove=(LABEL_IN_PROGRESS,))
            return ReviewResult(pr.number, success=False, error=str(e))

        logger.info(
            "Automated review completed",
            repo=f"{owner}/{repo}",
            pr=pr.number,
            commit_sha=pr.head_sha,
            response_length=len(result.stdout),
        )
        await self._set_labels(owner, repo, pr.number, add=LABEL_COMPLETE, remove=(LABEL_IN_PROGRESS, LABEL_NEEDED))
        return ReviewResult(pr.number, success=True)

    async def _set_labels(self, owner: str, repo: str, number: int, add: Optional[str], remove: tuple) -> None:
        """Labels are cosmetic; failures are logged and the review continues."""
        try:
            for label in remove:
                await self.host.remove_label(owner, repo, number, label)
            if add:
                await self.host.add_labels(owner, repo, number, [add])
        except Exception as e:
            logger.warning("Failed to update review labels", repo=f"{owner}/{repo}", pr=number, error=str(e))
