"""Exception hierarchy for prbench.

Everything raised on purpose derives from :class:`PrBenchError`, so the
orchestrator can tell a failed benchmark apart from a programming error.

::

    PrBenchError
    ├── ConfigurationError      fatal, startup only
    ├── InvalidEventError       webhook payload is missing required fields
    ├── WorkspaceError
    │   ├── FetchError          git clone failed
    │   ├── CheckoutError       ref does not exist
    │   └── DependencyError     venv creation / install failed
    ├── SuiteError
    │   ├── SuiteLoadError      entry file missing or output unparseable
    │   ├── SuiteExecutionError suite exited non-zero or timed out
    │   └── SuiteShapeError     result document has the wrong shape
    ├── PublishError            posting the comment failed
    └── OrchestrationError      one event's workflow failed
"""

from __future__ import annotations

from typing import Any


class PrBenchError(Exception):
    """Base class for all prbench errors."""


class ConfigurationError(PrBenchError):
    """A required configuration value is missing or invalid."""


class InvalidEventError(PrBenchError, ValueError):
    """A webhook payload lacks a field the pipeline needs."""


class WorkspaceError(PrBenchError):
    """A workspace could not be created, provisioned or removed."""


class FetchError(WorkspaceError):
    """Cloning the repository failed (network, auth, timeout)."""


class CheckoutError(WorkspaceError):
    """The requested branch or ref could not be checked out."""


class DependencyError(WorkspaceError):
    """Installing the project's dependencies failed."""


class SuiteError(PrBenchError):
    """The benchmark suite did not produce a usable result."""


class SuiteLoadError(SuiteError):
    """The suite entry file is missing or its output is not valid JSON."""


class SuiteExecutionError(SuiteError):
    """The suite exited with a non-zero status or timed out."""


class SuiteShapeError(SuiteError):
    """The result document does not match the expected shape."""


class PublishError(PrBenchError):
    """The rendered report could not be posted."""


class OrchestrationError(PrBenchError):
    """Processing of a single pull-request event failed.

    Attributes:
        state: Name of the state the workflow was in when it failed.
        cause: The underlying error, if any.
        outcome: The partial :class:`~prbench.orchestrator.EventOutcome`, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        state: str = "",
        cause: BaseException | None = None,
        outcome: Any = None,
    ) -> None:
        super().__init__(message)
        self.state = state
        self.cause = cause
        self.outcome = outcome
