"""
Review Decision Engine
======================

Decides, per (pull request, commit), whether an automated review runs now,
waits for a later CI event, or is permanently skipped.

Modes (first match wins):
1. Forced: trigger whenever the triggering suite concluded success.
2. Wait-for-all (default, also used when no trigger workflow is named):
   every material suite must be completed/success. Neutral and skipped
   suites are ignorable, as are suites that look abandoned (queued past the
   conditional-job timeout, queued with no check runs for over a minute,
   in progress without an update past the max-wait window).
3. Named workflow: at least one suite from that app must succeed.

Decisions are never stored; evaluating the same observations twice gives
the same answer.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

import structlog

from claude_hub.core.github_client import RepositoryHost
from claude_hub.core.models import (
    IGNORABLE_CONCLUSIONS,
    CheckSuiteObservation,
    CheckSuiteStatus,
    DecisionOutcome,
    PullRequestRef,
    ReviewDecision,
    ReviewPolicy,
)

logger = structlog.get_logger()

EMPTY_SUITE_GRACE_MS = 60_000

GITHUB_ACTIONS_SLUG = "github-actions"
GITHUB_ACTIONS_NAME = "GitHub Actions"


def _age_ms(now: datetime, then: Optional[datetime]) -> Optional[float]:
    if then is None:
        return None
    return (now - then).total_seconds() * 1000


def abandoned_reason(suite: CheckSuiteObservation, policy: ReviewPolicy, now: datetime) -> Optional[str]:
    """Why a not-yet-completed suite can be ignored, or None if it must be waited for."""
    age = _age_ms(now, suite.created_at)
    staleness = _age_ms(now, suite.updated_at)

    if suite.status == CheckSuiteStatus.QUEUED and age is not None:
        if age > policy.conditional_timeout_ms:
            return "conditional_job_timeout"
        if suite.check_runs_count == 0 and age > EMPTY_SUITE_GRACE_MS:
            return "empty_check_suite"
    if suite.status == CheckSuiteStatus.IN_PROGRESS and staleness is not None:
        if staleness > policy.max_wait_ms:
            return "stale_in_progress"
    return None


def merge_observations(
    trigger: Optional[CheckSuiteObservation],
    suites: Iterable[CheckSuiteObservation],
) -> List[CheckSuiteObservation]:
    """Listing APIs lag behind webhooks; the triggering suite's own state wins."""
    merged = {s.id: s for s in suites}
    if trigger is not None:
        merged[trigger.id] = trigger
    return list(merged.values())


def partition(
    suites: Iterable[CheckSuiteObservation],
    policy: ReviewPolicy,
    now: datetime,
) -> Tuple[List[CheckSuiteObservation], List[Tuple[CheckSuiteObservation, str]]]:
    material: List[CheckSuiteObservation] = []
    ignored: List[Tuple[CheckSuiteObservation, str]] = []
    for suite in suites:
        if suite.conclusion in IGNORABLE_CONCLUSIONS:
            ignored.append((suite, "explicitly_skipped"))
            continue
        if suite.status != CheckSuiteStatus.COMPLETED:
            reason = abandoned_reason(suite, policy, now)
            if reason:
                ignored.append((suite, reason))
                continue
        material.append(suite)
    return material, ignored


def evaluate_check_suites(
    trigger: Optional[CheckSuiteObservation],
    suites: Iterable[CheckSuiteObservation],
    policy: ReviewPolicy,
    now: Optional[datetime] = None,
) -> ReviewDecision:
    """Pure CI evaluation for one commit."""
    now = now or datetime.now(timezone.utc)

    if policy.force_on_success:
        if trigger is not None and trigger.conclusion == "success":
            return ReviewDecision(DecisionOutcome.TRIGGER, "forced")
        return ReviewDecision(DecisionOutcome.SKIP, "forced mode: triggering suite did not succeed")

    observations = merge_observations(trigger, suites)

    if policy.wait_for_all_checks or not policy.trigger_workflow:
        if not observations:
            return ReviewDecision(DecisionOutcome.TRIGGER, "no CI configured for this commit")

        material, ignored = partition(observations, policy, now)

        failed = [
            s.label for s in material
            if s.status == CheckSuiteStatus.COMPLETED and s.conclusion != "success"
        ]
        if failed:
            return ReviewDecision(
                DecisionOutcome.SKIP,
                f"check suites did not succeed: {', '.join(failed)}",
                failed=failed,
            )

        pending = [s.label for s in material if s.status != CheckSuiteStatus.COMPLETED]
        if pending:
            return ReviewDecision(
                DecisionOutcome.DEFER,
                f"waiting for check suites: {', '.join(pending)}",
                pending=pending,
            )

        if not material:
            return ReviewDecision(
                DecisionOutcome.TRIGGER,
                f"all {len(ignored)} check suites were skipped, neutral or abandoned",
            )
        return ReviewDecision(DecisionOutcome.TRIGGER, f"all {len(material)} material check suites passed")

    workflow = policy.trigger_workflow
    matches = [s for s in observations if _runs_workflow(s, workflow)]
    if not matches:
        return ReviewDecision(DecisionOutcome.DEFER, f"workflow not present: {workflow}")
    if any(s.conclusion == "success" for s in matches):
        return ReviewDecision(DecisionOutcome.TRIGGER, f"triggered by workflow: {workflow}")

    pending = [s.label for s in matches if s.status != CheckSuiteStatus.COMPLETED]
    if pending:
        return ReviewDecision(
            DecisionOutcome.DEFER,
            f"waiting for workflow {workflow}: {', '.join(pending)}",
            pending=pending,
        )
    failed = [s.label for s in matches]
    return ReviewDecision(
        DecisionOutcome.SKIP,
        f"workflow {workflow} did not succeed",
        failed=failed,
    )


def _runs_workflow(suite: CheckSuiteObservation, workflow: str) -> bool:
    # Workflow runs report under the GitHub Actions app, not under the workflow name
    if suite.app_identity == workflow:
        return True
    return suite.app_slug == GITHUB_ACTIONS_SLUG or suite.app_identity == GITHUB_ACTIONS_NAME


def review_marker_present(reviews: Iterable[dict], commit_sha: str) -> bool:
    marker = f"commit: {commit_sha}"
    return any(marker in (review.get("body") or "") for review in reviews)


class ReviewDecisionEngine:
    """
    CI evaluation plus deduplication against existing reviews.

    Usage:
        engine = ReviewDecisionEngine(github, policy)
        decision = await engine.decide("octo", "repo", pr, trigger_suite)
    """

    def __init__(self, host: RepositoryHost, policy: ReviewPolicy):
        self.host = host
        self.policy = policy

    async def already_reviewed(self, owner: str, repo: str, pr_number: int, commit_sha: str) -> bool:
        """Scan review bodies for the commit marker. Lookup failure counts as not reviewed."""
        try:
            reviews = await self.host.list_reviews(owner, repo, pr_number)
        except Exception as e:
            logger.warning(
                "Review lookup failed, assuming not yet reviewed",
                repo=f"{owner}/{repo}",
                pr=pr_number,
                commit_sha=commit_sha,
                error=str(e),
            )
            return False
        return review_marker_present(reviews, commit_sha)

    async def decide(
        self,
        owner: str,
        repo: str,
        pr: PullRequestRef,
        trigger: Optional[CheckSuiteObservation],
        now: Optional[datetime] = None,
    ) -> ReviewDecision:
        if not pr.head_sha:
            return ReviewDecision(DecisionOutcome.SKIP, "no commit SHA available")

        if self.policy.force_on_success:
            suites: List[CheckSuiteObservation] = []
        else:
            suites = await self.host.list_check_suites_for_ref(owner, repo, pr.head_sha)
            suites = [s for s in suites if not s.head_sha or s.head_sha == pr.head_sha]
            # A suite for an older commit says nothing about the current head
            if trigger is not None and trigger.head_sha and trigger.head_sha != pr.head_sha:
                trigger = None

        decision = evaluate_check_suites(trigger, suites, self.policy, now)
        if decision.outcome == DecisionOutcome.TRIGGER:
            decision.already_reviewed_at_commit = await self.already_reviewed(owner, repo, pr.number, pr.head_sha)

        logger.info(
            "Review decision",
            repo=f"{owner}/{repo}",
            pr=pr.number,
            commit_sha=pr.head_sha,
            outcome=decision.outcome.value,
            reason=decision.reason,
            already_reviewed=decision.already_reviewed_at_commit,
        )
        return decision
