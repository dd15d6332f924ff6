"""Pydantic models for Azure DevOps Test and Work Item API responses."""

from typing import Literal

from pydantic import Field

from ado_publish.models.base import AdoModel

type TestOutcome = Literal["Passed", "Failed", "NotExecuted"]

type TestRunState = Literal[
    "Unspecified",
    "NotStarted",
    "InProgress",
    "Completed",
    "Aborted",
    "Waiting",
    "NeedsInvestigation",
]

# Accepted values of the test attachment ``attachmentType`` field.
type AttachmentType = Literal["GeneralAttachment", "ConsoleLog"]


class ShallowReference(AdoModel):
    """Reference to another resource, as embedded in most test API payloads.

    The test API serializes nested IDs as strings; they are coerced to int.
    """

    id: int
    name: str | None = None
    url: str | None = None


class TestPoint(AdoModel):
    """A test point: one test case scheduled inside one plan/suite."""

    __test__ = False

    id: int
    test_case: ShallowReference | None = Field(default=None, alias="testCase")
    outcome: str | None = None
    state: str | None = None


class TestRun(AdoModel):
    """A test run as returned by the test runs API."""

    __test__ = False

    id: int
    name: str
    state: TestRunState = "InProgress"
    url: str | None = None
    web_access_url: str | None = Field(default=None, alias="webAccessUrl")


class TestCaseResult(AdoModel):
    """A single result record inside a test run."""

    __test__ = False

    id: int
    test_case: ShallowReference | None = Field(default=None, alias="testCase")
    test_point: ShallowReference | None = Field(default=None, alias="testPoint")
    outcome: str | None = None
    state: str | None = None


class WorkItem(AdoModel):
    """A work item (bug) created through the work item tracking API."""

    id: int
    url: str | None = None


class AttachmentReference(AdoModel):
    """Reference returned after uploading an attachment."""

    id: int | str
    url: str
