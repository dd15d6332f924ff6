"""Data submitted to Azure DevOps: result updates, attachments and bugs."""

from collections.abc import Sequence
from dataclasses import dataclass, field

from ado_publish.models.ado import AttachmentType, TestOutcome


@dataclass(frozen=True, kw_only=True)
class TestResultUpdate:
    """Outcome of one test case inside the current test run."""

    __test__ = False

    test_case_id: int
    outcome: TestOutcome
    duration: float = 0
    error_message: str | None = None
    stack_trace: str | None = None
    comment: str | None = None


@dataclass(frozen=True, kw_only=True)
class Attachment:
    """A file to attach to a test result or work item."""

    file_name: str
    content: bytes = field(repr=False)
    attachment_type: AttachmentType = "GeneralAttachment"
    comment: str | None = None


@dataclass(frozen=True, kw_only=True)
class Bug:
    """A bug work item to create for a failed scenario."""

    title: str
    description: str
    repro_steps: str
    severity: str
    priority: int
    assigned_to: str | None = None
    area_path: str | None = None
    iteration_path: str | None = None
    tags: Sequence[str] = ()
    found_in_build: str | None = None
    tested_by: Sequence[int] = ()
