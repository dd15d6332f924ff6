"""Typed Azure DevOps Test Plans and Work Item operations."""

import base64
import logging
from collections.abc import AsyncGenerator, Collection, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ado_publish.config import AdoConfig
from ado_publish.models.ado import (
    AttachmentReference,
    TestCaseResult,
    TestPoint,
    TestRun,
    WorkItem,
)
from ado_publish.models.submission import Attachment, Bug, TestResultUpdate
from ado_publish.tags import PlanSuite
from ado_publish.transport import (
    JSON_PATCH_CONTENT_TYPE,
    OCTET_STREAM_CONTENT_TYPE,
    AdoTransport,
)

log = logging.getLogger(__name__)


def _values(data: Any) -> list[Any]:
    """Unwrap a ``{"count": n, "value": [...]}`` collection response."""
    if isinstance(data, dict):
        return list(data.get("value") or [])
    if isinstance(data, list):
        return data
    return []


def _add(path: str, value: Any) -> dict[str, Any]:
    return {"op": "add", "path": path, "value": value}


@dataclass(frozen=True, kw_only=True)
class AdoClient:
    """Azure DevOps operations used by the result publisher."""

    transport: AdoTransport

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: AdoConfig
    ) -> AsyncGenerator["AdoClient", None]:
        """Create client with managed transport lifecycle."""
        async with AdoTransport.from_config(config) as transport:
            yield cls(transport=transport)

    async def fetch_test_points(self, plan_suite: PlanSuite) -> Sequence[TestPoint]:
        """Fetch all test points of a test suite."""
        log.info("Fetching test points for %s", plan_suite)
        data = await self.transport.request(
            "GET",
            f"/test/plans/{plan_suite.plan_id}/suites/{plan_suite.suite_id}/points",
        )
        points = [TestPoint.model_validate(item) for item in _values(data)]
        log.info("Fetched %d test points for %s", len(points), plan_suite)
        return points

    async def create_test_run(
        self,
        name: str,
        point_ids: Collection[int],
        plan_id: int | None = None,
    ) -> TestRun:
        """Create an automated test run scoped to the given test points."""
        payload: dict[str, Any] = {
            "name": name,
            "automated": True,
            "state": "InProgress",
            "startedDate": datetime.now(UTC).isoformat(),
        }
        if point_ids:
            payload["pointIds"] = sorted(point_ids)
        if plan_id is not None:
            payload["plan"] = {"id": str(plan_id)}

        log.info("Creating test run %r with %d test points", name, len(point_ids))
        data = await self.transport.request("POST", "/test/runs", payload)
        run = TestRun.model_validate(data)
        log.info("Test run created with ID: %s", run.id)
        return run

    async def complete_test_run(self, run_id: int) -> None:
        """Mark a test run as completed."""
        log.info("Completing test run: %s", run_id)
        await self.transport.request(
            "PATCH",
            f"/test/runs/{run_id}",
            {
                "state": "Completed",
                "completedDate": datetime.now(UTC).isoformat(),
            },
        )

    async def get_test_results(self, run_id: int) -> Sequence[TestCaseResult]:
        """List the result records of a test run."""
        data = await self.transport.request("GET", f"/test/runs/{run_id}/results")
        return [TestCaseResult.model_validate(item) for item in _values(data)]

    async def update_test_result(
        self,
        run_id: int,
        update: TestResultUpdate,
        result_id: int | None = None,
    ) -> int:
        """Record the outcome of a test case in a run.

        Updates the existing result record ``result_id`` when given (the
        records a planned run creates for its test points), otherwise adds a
        new result for the test case.

        Returns:
            ID of the result record

        """
        log.info(
            "Updating test result for test case %s: %s",
            update.test_case_id,
            update.outcome,
        )
        record: dict[str, Any] = {
            "outcome": update.outcome,
            "state": "Completed",
            "durationInMs": update.duration,
            "completedDate": datetime.now(UTC).isoformat(),
        }
        if update.error_message is not None:
            record["errorMessage"] = update.error_message
        if update.stack_trace is not None:
            record["stackTrace"] = update.stack_trace
        if update.comment is not None:
            record["comment"] = update.comment

        if result_id is not None:
            record["id"] = result_id
            data = await self.transport.request(
                "PATCH", f"/test/runs/{run_id}/results", [record]
            )
        else:
            record["testCase"] = {"id": str(update.test_case_id)}
            data = await self.transport.request(
                "POST", f"/test/runs/{run_id}/results", [record]
            )

        results = [TestCaseResult.model_validate(item) for item in _values(data)]
        if results:
            return results[0].id
        if result_id is not None:
            return result_id
        raise ValueError(
            f"No result record returned for test case {update.test_case_id}"
        )

    async def upload_result_attachment(
        self, run_id: int, result_id: int, attachment: Attachment
    ) -> AttachmentReference:
        """Attach a file to a test result."""
        log.debug(
            "Uploading attachment %s to result %s of run %s",
            attachment.file_name,
            result_id,
            run_id,
        )
        payload: dict[str, Any] = {
            "stream": base64.b64encode(attachment.content).decode("ascii"),
            "fileName": attachment.file_name,
            "attachmentType": attachment.attachment_type,
        }
        if attachment.comment is not None:
            payload["comment"] = attachment.comment
        data = await self.transport.request(
            "POST", f"/test/runs/{run_id}/results/{result_id}/attachments", payload
        )
        return AttachmentReference.model_validate(data)

    async def create_bug(self, bug: Bug) -> WorkItem:
        """Create a bug work item."""
        log.info("Creating bug: %s", bug.title)
        operations = [
            _add("/fields/System.Title", bug.title),
            _add("/fields/System.Description", bug.description),
            _add("/fields/Microsoft.VSTS.TCM.ReproSteps", bug.repro_steps),
            _add("/fields/Microsoft.VSTS.Common.Severity", bug.severity),
            _add("/fields/Microsoft.VSTS.Common.Priority", bug.priority),
        ]
        if bug.assigned_to:
            operations.append(_add("/fields/System.AssignedTo", bug.assigned_to))
        if bug.area_path:
            operations.append(_add("/fields/System.AreaPath", bug.area_path))
        if bug.iteration_path:
            operations.append(
                _add("/fields/System.IterationPath", bug.iteration_path)
            )
        if bug.tags:
            operations.append(_add("/fields/System.Tags", "; ".join(bug.tags)))
        if bug.found_in_build:
            operations.append(
                _add("/fields/Microsoft.VSTS.Build.FoundIn", bug.found_in_build)
            )
        for test_case_id in bug.tested_by:
            operations.append(
                _add(
                    "/relations/-",
                    {
                        "rel": "Microsoft.VSTS.Common.TestedBy-Forward",
                        "url": self.work_item_url(test_case_id),
                    },
                )
            )

        data = await self.transport.request(
            "POST",
            "/wit/workitems/$Bug",
            operations,
            content_type=JSON_PATCH_CONTENT_TYPE,
        )
        work_item = WorkItem.model_validate(data)
        log.info("Bug created with ID: %s", work_item.id)
        return work_item

    async def attach_to_work_item(
        self, work_item_id: int, attachment: Attachment
    ) -> AttachmentReference:
        """Upload a file and link it to a work item."""
        log.debug(
            "Uploading attachment for work item %s: %s",
            work_item_id,
            attachment.file_name,
        )
        data = await self.transport.request(
            "POST",
            "/wit/attachments",
            attachment.content,
            params={"fileName": attachment.file_name},
            content_type=OCTET_STREAM_CONTENT_TYPE,
        )
        reference = AttachmentReference.model_validate(data)

        await self.transport.request(
            "PATCH",
            f"/wit/workitems/{work_item_id}",
            [
                _add(
                    "/relations/-",
                    {
                        "rel": "AttachedFile",
                        "url": reference.url,
                        "attributes": {"comment": attachment.comment or ""},
                    },
                )
            ],
            content_type=JSON_PATCH_CONTENT_TYPE,
        )
        return reference

    def work_item_url(self, work_item_id: int) -> str:
        """API URL of a work item, as used in work item relations."""
        config = self.transport.config
        return (
            f"{config.api_base_url.rstrip('/')}/{config.organization}"
            f"/_apis/wit/workItems/{work_item_id}"
        )
