"""Models for the outcome of individual publishing steps.

Every remote interaction performed by the publisher is reported as one of
these values instead of raising, so a single failing call never aborts the
local test suite and the failure paths stay observable in tests.
"""

from dataclasses import dataclass
from typing import Literal

type PublishStep = Literal[
    "collect_test_points",
    "start_test_run",
    "update_result",
    "upload_attachment",
    "create_bug",
    "complete_test_run",
]


@dataclass(frozen=True, kw_only=True)
class Ok:
    """The step reached the remote service and succeeded."""

    step: PublishStep
    detail: str | None = None


@dataclass(frozen=True, kw_only=True)
class Skipped:
    """The step was intentionally not performed."""

    step: PublishStep
    reason: str


@dataclass(frozen=True, kw_only=True)
class RemoteFailure:
    """The step failed; ``error`` is the exception raised by the transport."""

    step: PublishStep
    error: Exception
    detail: str | None = None


type StepResult = Ok | Skipped | RemoteFailure
