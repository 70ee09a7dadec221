"""Per-event workflow: benchmark a pull request against its base branch.

One pull-request event moves through these states::

    IDLE → PROVISIONING_BASE → RUNNING_BASE → PROVISIONING_CANDIDATE
         → RUNNING_CANDIDATE → COMPARING → RENDERING → PUBLISHING
         → CLEANING_UP → DONE

Any error moves the event to FAILED, which goes on to CLEANING_UP.
Cleanup (removing both workspaces) runs on every path. Actions other
than ``opened`` and ``synchronize`` end in IGNORED without touching the
filesystem.

The base and candidate suites run one after the other, never in
parallel, so the two measurements do not compete for CPU.
"""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from prbench.compare import compare_results
from prbench.errors import InvalidEventError, OrchestrationError, PrBenchError, WorkspaceError
from prbench.formatting import format_duration
from prbench.logging import get_logger
from prbench.publish import Publisher
from prbench.report import render_report
from prbench.results import BenchmarkResult
from prbench.suite import SuiteRunner
from prbench.workspace import Workspace, WorkspaceManager, new_workspace_id

log = get_logger("orchestrator")

TRIGGER_ACTIONS = ("opened", "synchronize")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PullRequestEvent:
    """The parts of a GitHub ``pull_request`` webhook the pipeline needs."""

    action: str
    number: int
    head_url: str
    head_ref: str
    base_url: str
    base_ref: str
    title: str = ""

    @property
    def triggers_benchmark(self) -> bool:
        return self.action in TRIGGER_ACTIONS

    @classmethod
    def from_payload(cls, payload: Any) -> PullRequestEvent:
        """Extract an event from a decoded webhook payload.

        Raises:
            InvalidEventError: If a required field is missing.
        """
        if not isinstance(payload, dict):
            raise InvalidEventError("Payload must be a JSON object")
        try:
            pr = payload["pull_request"]
            return cls(
                action=str(payload["action"]),
                number=int(payload["number"]),
                title=str(pr.get("title") or ""),
                head_url=str(pr["head"]["repo"]["clone_url"]),
                head_ref=str(pr["head"]["ref"]),
                base_url=str(pr["base"]["repo"]["clone_url"]),
                base_ref=str(pr["base"]["ref"]),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise InvalidEventError(f"Malformed pull_request payload: {exc!r}") from exc


# ---------------------------------------------------------------------------
# State tracking
# ---------------------------------------------------------------------------


class EventState(enum.Enum):
    """Workflow states for one pull-request event."""

    IDLE = "idle"
    PROVISIONING_BASE = "provisioning-base"
    RUNNING_BASE = "running-base"
    PROVISIONING_CANDIDATE = "provisioning-candidate"
    RUNNING_CANDIDATE = "running-candidate"
    COMPARING = "comparing"
    RENDERING = "rendering"
    PUBLISHING = "publishing"
    CLEANING_UP = "cleaning-up"
    DONE = "done"
    FAILED = "failed"
    IGNORED = "ignored"


@dataclass
class EventOutcome:
    """What happened while processing one event."""

    event: PullRequestEvent
    states: list[EventState] = field(default_factory=lambda: [EventState.IDLE])
    final_state: EventState = EventState.IDLE
    workspace_id: str = ""
    base_revision: str | None = None
    candidate_revision: str | None = None
    report: str | None = None
    published: bool = False
    error: str | None = None

    @property
    def state(self) -> EventState:
        """The most recently entered state."""
        return self.states[-1]

    def enter(self, state: EventState) -> None:
        log.debug("PR #%d: %s -> %s", self.event.number, self.state.value, state.value)
        self.states.append(state)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """Sequences workspace, suite, comparison, report and publishing steps.

    All collaborators are constructed once by the caller and reused for
    every event.
    """

    def __init__(
        self,
        workspaces: WorkspaceManager,
        runner: SuiteRunner,
        publisher: Publisher,
        suite_entry: str,
    ) -> None:
        self.workspaces = workspaces
        self.runner = runner
        self.publisher = publisher
        self.suite_entry = suite_entry

    def handle_pull_request_event(
        self,
        event: PullRequestEvent,
        cancel_event: threading.Event | None = None,
    ) -> EventOutcome:
        """Process one event; never raises for per-event failures.

        Failures are logged with the PR number, refs and workspace id.
        """
        try:
            return self.process(event, cancel_event=cancel_event)
        except OrchestrationError as exc:
            outcome = exc.outcome if exc.outcome is not None else EventOutcome(event=event)
            log.error(
                "PR #%d failed (state=%s, base=%s@%s, head=%s@%s, workspace=%s): %s",
                event.number,
                exc.state,
                event.base_url,
                event.base_ref,
                event.head_url,
                event.head_ref,
                outcome.workspace_id or "-",
                exc.cause or exc,
            )
            return outcome
        except Exception as exc:
            log.exception(
                "Unexpected error processing PR #%d (base=%s@%s, head=%s@%s): %s",
                event.number,
                event.base_url,
                event.base_ref,
                event.head_url,
                event.head_ref,
                exc,
            )
            outcome = EventOutcome(event=event, final_state=EventState.FAILED, error=str(exc))
            return outcome

    def process(
        self,
        event: PullRequestEvent,
        cancel_event: threading.Event | None = None,
    ) -> EventOutcome:
        """Run the full workflow for *event*.

        Cleanup always runs before this returns or raises.

        Raises:
            OrchestrationError: If any step fails or the run is cancelled.
                Unexpected exceptions are wrapped as well, with the original
                in ``cause``.
                ``state`` names the failing step and ``outcome`` holds
                the partial :class:`EventOutcome`.
        """
        outcome = EventOutcome(event=event)

        if not event.triggers_benchmark:
            log.info("PR #%d: action '%s' ignored", event.number, event.action)
            outcome.enter(EventState.IGNORED)
            outcome.final_state = EventState.IGNORED
            return outcome

        outcome.workspace_id = new_workspace_id()
        log.info(
            "PR #%d %r: benchmarking %s@%s against %s@%s (work id %s)",
            event.number,
            event.title,
            event.head_url,
            event.head_ref,
            event.base_url,
            event.base_ref,
            outcome.workspace_id,
        )

        created: list[Workspace] = []
        error: OrchestrationError | None = None
        start = time.monotonic()
        try:
            self._run_steps(event, outcome, created, cancel_event)
        except Exception as exc:
            failed_state = outcome.state
            outcome.enter(EventState.FAILED)
            outcome.final_state = EventState.FAILED
            outcome.error = str(exc)
            if not isinstance(exc, PrBenchError):
                log.exception(
                    "PR #%d: unexpected error while %s", event.number, failed_state.value
                )
            if isinstance(exc, OrchestrationError):
                error = exc
                error.state = error.state or failed_state.value
                error.outcome = outcome
            else:
                error = OrchestrationError(
                    f"PR #{event.number} failed while {failed_state.value}: {exc}",
                    state=failed_state.value,
                    cause=exc,
                    outcome=outcome,
                )
        finally:
            self._cleanup(outcome, created)

        if error is not None:
            raise error from error.cause

        outcome.enter(EventState.DONE)
        outcome.final_state = EventState.DONE
        log.info(
            "PR #%d done in %s", event.number, format_duration(time.monotonic() - start)
        )
        return outcome

    # -- steps -------------------------------------------------------------

    def _run_steps(
        self,
        event: PullRequestEvent,
        outcome: EventOutcome,
        created: list[Workspace],
        cancel_event: threading.Event | None,
    ) -> None:
        def step(state: EventState) -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise OrchestrationError(f"PR #{event.number} cancelled before {state.value}")
            outcome.enter(state)

        step(EventState.PROVISIONING_BASE)
        base_ws, outcome.base_revision = self._provision(
            f"{outcome.workspace_id}-master", event.base_url, event.base_ref, created
        )

        step(EventState.RUNNING_BASE)
        base_result = self._run_suite("base", base_ws)

        step(EventState.PROVISIONING_CANDIDATE)
        candidate_ws, outcome.candidate_revision = self._provision(
            f"{outcome.workspace_id}-pr", event.head_url, event.head_ref, created
        )

        step(EventState.RUNNING_CANDIDATE)
        candidate_result = self._run_suite("candidate", candidate_ws)

        step(EventState.COMPARING)
        comparison = compare_results(base_result, candidate_result)

        step(EventState.RENDERING)
        outcome.report = render_report(comparison)

        step(EventState.PUBLISHING)
        self.publisher.publish(event.number, outcome.report)
        outcome.published = True

    def _provision(
        self,
        workspace_id: str,
        url: str,
        ref: str,
        created: list[Workspace],
    ) -> tuple[Workspace, str | None]:
        workspace = self.workspaces.create_workspace(workspace_id)
        created.append(workspace)
        log.info("Fetching %s@%s into %s", url, ref, workspace.path)
        revision = self.workspaces.materialize_revision(workspace, url, ref)
        log.info("Installing dependencies for %s (%s)", ref, revision or "unknown revision")
        self.workspaces.install_dependencies(workspace)
        return workspace, revision

    def _run_suite(self, label: str, workspace: Workspace) -> BenchmarkResult:
        log.info("Running %s suite %s", label, self.suite_entry)
        result = self.runner.run(workspace, self.suite_entry)
        log.info(
            "%s run '%s': %d suite(s), %d test(s)",
            label.capitalize(),
            result.name,
            len(result.suites),
            result.test_count,
        )
        return result

    def _cleanup(self, outcome: EventOutcome, created: list[Workspace]) -> None:
        outcome.enter(EventState.CLEANING_UP)
        for workspace in created:
            try:
                self.workspaces.destroy_workspace(workspace)
            except WorkspaceError as exc:
                log.error(
                    "PR #%d: cleanup of %s failed: %s", outcome.event.number, workspace.path, exc
                )
