"""Publish scenario results to an Azure DevOps test run.

Supports two producer modes:

* sequential: ``publish_scenario_result`` is awaited as each scenario
  finishes, so results become visible in the order scenarios complete;
* batched: parallel workers call ``add_scenario_result`` and everything is
  published in one pass by ``publish_all_results`` (or ``complete_test_run``)
  in the order results were first added.

No method raises on remote failures, and an error while publishing one
scenario affects only that scenario. Each step yields a ``StepResult``
which is logged here and returned to the caller.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from ado_publish.bugs import build_bug
from ado_publish.client import AdoClient
from ado_publish.config import AdoConfig
from ado_publish.models.ado import AttachmentType, TestOutcome, TestRun
from ado_publish.models.result import (
    Ok,
    PublishStep,
    RemoteFailure,
    Skipped,
    StepResult,
)
from ado_publish.models.scenario import (
    Feature,
    Scenario,
    ScenarioArtifacts,
    ScenarioResult,
    ScenarioStatus,
)
from ado_publish.models.submission import Attachment, TestResultUpdate
from ado_publish.tags import AdoMetadata, MetadataResolver, extract_metadata
from ado_publish.test_points import TestPointCache, collect_test_points

log = logging.getLogger(__name__)

OUTCOMES: Mapping[ScenarioStatus, TestOutcome] = {
    "passed": "Passed",
    "failed": "Failed",
}

# Artifact kinds in upload order, with the attachment type each is sent as.
ARTIFACT_KINDS: Sequence[tuple[str, AttachmentType]] = (
    ("screenshots", "GeneralAttachment"),
    ("videos", "GeneralAttachment"),
    ("har", "GeneralAttachment"),
    ("traces", "GeneralAttachment"),
    ("logs", "ConsoleLog"),
)


class RunState(StrEnum):
    """Lifecycle of the publisher."""

    UNINITIALIZED = "uninitialized"
    COLLECTING = "collecting"
    RUN_STARTED = "run_started"
    PUBLISHING = "publishing"
    COMPLETED = "completed"


def map_outcome(status: ScenarioStatus) -> TestOutcome:
    """Map a local scenario status to an Azure DevOps outcome."""
    return OUTCOMES.get(status, "NotExecuted")


async def _attempt[T](
    step: PublishStep, detail: str, operation: Awaitable[T]
) -> T | RemoteFailure:
    """Await a remote operation, turning any error into a ``RemoteFailure``."""
    try:
        return await operation
    except Exception as error:
        return RemoteFailure(step=step, error=error, detail=detail)


def _read_attachment(
    path: str, attachment_type: AttachmentType, comment: str
) -> Attachment | None:
    file = Path(path)
    if not file.is_file():
        log.warning("File not found for upload: %s", path)
        return None
    try:
        content = file.read_bytes()
    except OSError as error:
        log.warning("Failed to read file %s for upload: %s", path, error)
        return None
    return Attachment(
        file_name=file.name,
        content=content,
        attachment_type=attachment_type,
        comment=comment,
    )


def log_step_results(results: Iterable[StepResult]) -> None:
    """Log the outcome of publishing steps."""
    for result in results:
        if isinstance(result, RemoteFailure):
            log.error(
                "ADO %s failed (%s): %s",
                result.step,
                result.detail or "-",
                result.error,
                exc_info=result.error,
            )
        elif isinstance(result, Skipped):
            log.debug("ADO %s skipped: %s", result.step, result.reason)
        else:
            log.debug("ADO %s succeeded (%s)", result.step, result.detail or "-")


@dataclass(kw_only=True)
class AdoPublisher:
    """Creates one Azure DevOps test run per suite and reports results to it."""

    client: AdoClient
    config: AdoConfig
    resolver: MetadataResolver = extract_metadata
    test_point_cache: TestPointCache = field(default_factory=TestPointCache)

    _state: RunState = field(default=RunState.UNINITIALIZED, init=False)
    _collected_points: set[int] = field(default_factory=set, init=False)
    _plan_ids: set[int] = field(default_factory=set, init=False)
    _run: TestRun | None = field(default=None, init=False)
    _result_ids: dict[int, int] = field(default_factory=dict, init=False)
    _pending: dict[str, ScenarioResult] = field(default_factory=dict, init=False)
    _drain_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _start_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: AdoConfig, resolver: MetadataResolver = extract_metadata
    ) -> AsyncGenerator["AdoPublisher", None]:
        """Create publisher with managed client lifecycle."""
        async with AdoClient.from_config(config) as client:
            yield cls(client=client, config=config, resolver=resolver)

    def is_enabled(self) -> bool:
        """Check if publishing to Azure DevOps is enabled."""
        return self.config.enabled

    @property
    def state(self) -> RunState:
        """Current lifecycle state."""
        return self._state

    @property
    def current_test_run(self) -> TestRun | None:
        """The test run results are published to, if one was started."""
        return self._run

    @property
    def collected_point_ids(self) -> frozenset[int]:
        """Test point IDs the next test run will be scoped to."""
        return frozenset(self._collected_points)

    @property
    def pending_results(self) -> Mapping[str, ScenarioResult]:
        """Results buffered for batch publishing, by scenario key."""
        return dict(self._pending)

    async def collect_test_points(
        self, scenarios: Iterable[tuple[Scenario, Feature]]
    ) -> Sequence[StepResult]:
        """Collect the test points of all scenarios that are about to run.

        Points accumulate across calls. Fetch failures degrade the affected
        plan/suite pair to "no points" and are returned.
        """
        if not self.is_enabled():
            return []

        if self._run is None:
            self._state = RunState.COLLECTING

        collection = await collect_test_points(
            self.client, scenarios, self.resolver, self.test_point_cache
        )
        self.test_point_cache = collection.cache
        self._collected_points.update(collection.point_ids)
        self._plan_ids.update(collection.plan_ids)

        log.info(
            "Collected %d test points for ADO test run", len(self._collected_points)
        )
        log_step_results(collection.failures)
        return collection.failures

    async def start_test_run(self, name: str | None = None) -> StepResult:
        """Create the test run for the collected test points.

        Does nothing if a run is already started or no test points were
        collected.
        """
        if not self.is_enabled():
            return Skipped(step="start_test_run", reason="integration disabled")

        async with self._start_lock:
            if self._run is not None:
                return Skipped(
                    step="start_test_run",
                    reason=f"test run {self._run.id} already started",
                )
            if not self._collected_points:
                log.info("No ADO test points found - skipping test run creation")
                return Skipped(step="start_test_run", reason="no test points")

            run_name = name or self.config.run_name
            plan_id = next(iter(self._plan_ids)) if len(self._plan_ids) == 1 else None
            created = await _attempt(
                "start_test_run",
                run_name,
                self.client.create_test_run(
                    run_name, sorted(self._collected_points), plan_id
                ),
            )
            if isinstance(created, RemoteFailure):
                log_step_results([created])
                return created

            self._run = created
            self._state = RunState.RUN_STARTED
            log.info(
                "ADO test run %s started with %d test points: %s",
                created.id,
                len(self._collected_points),
                created.name,
            )
            await self._load_result_ids(created)

        return Ok(step="start_test_run", detail=f"run {created.id}")

    def add_scenario_result(self, result: ScenarioResult) -> None:
        """Buffer a result for batch publishing.

        A later result for the same scenario replaces the earlier one.
        """
        if not self.is_enabled():
            return

        self._pending[result.key] = result
        log.debug("Added scenario result for ADO: %s", result.key)

    async def publish_scenario_result(
        self, result: ScenarioResult
    ) -> Sequence[StepResult]:
        """Publish one result immediately."""
        if not self.is_enabled() or self._run is None:
            return []

        self._state = RunState.PUBLISHING
        results = await self._publish_isolated(self._run, result)
        log_step_results(results)
        return results

    async def publish_all_results(self) -> Sequence[StepResult]:
        """Publish and drain all buffered results.

        Returns immediately if another drain is in progress.
        """
        if not self.is_enabled() or self._run is None or self._drain_lock.locked():
            return []

        async with self._drain_lock:
            return await self._drain(self._run)

    async def complete_test_run(self) -> Sequence[StepResult]:
        """Publish remaining results, complete the run and reset per-run state.

        Waits for a drain in progress to finish first. Does nothing if no run
        was started.
        """
        if not self.is_enabled() or self._run is None:
            return []

        async with self._drain_lock:
            run = self._run
            if run is None:
                return []

            results: list[StepResult] = []
            if self._pending:
                results.extend(await self._drain(run))

            completed = await _attempt(
                "complete_test_run",
                f"run {run.id}",
                self.client.complete_test_run(run.id),
            )
            if isinstance(completed, RemoteFailure):
                log_step_results([completed])
                results.append(completed)
            else:
                log.info("ADO test run completed: %s", run.name)
                results.append(Ok(step="complete_test_run", detail=f"run {run.id}"))

            self._reset()
            self._state = RunState.COMPLETED
        return results

    async def _drain(self, run: TestRun) -> list[StepResult]:
        # Callers hold _drain_lock.
        self._state = RunState.PUBLISHING
        results: list[StepResult] = []
        log.info("Publishing %d test results to Azure DevOps...", len(self._pending))
        while self._pending:
            result = self._pending.pop(next(iter(self._pending)))
            scenario_results = await self._publish_isolated(run, result)
            log_step_results(scenario_results)
            results.extend(scenario_results)
        log.info("All test results published to Azure DevOps")
        return results

    def _reset(self) -> None:
        self._run = None
        self._pending.clear()
        self._collected_points.clear()
        self._plan_ids.clear()
        self._result_ids.clear()
        self._state = RunState.UNINITIALIZED

    async def _load_result_ids(self, run: TestRun) -> None:
        """Map test case IDs to the result records the run was created with."""
        records = await _attempt(
            "start_test_run", f"run {run.id}", self.client.get_test_results(run.id)
        )
        if isinstance(records, RemoteFailure):
            log.warning(
                "Could not list results of test run %s, new results will be "
                "added instead: %s",
                run.id,
                records.error,
            )
            return

        for record in records:
            if record.test_case is not None:
                self._result_ids.setdefault(record.test_case.id, record.id)

    async def _publish_isolated(
        self, run: TestRun, result: ScenarioResult
    ) -> list[StepResult]:
        """Publish one result; an unexpected error fails only this scenario."""
        try:
            return await self._publish(run, result)
        except Exception as error:
            return [RemoteFailure(step="update_result", error=error, detail=result.key)]

    async def _publish(self, run: TestRun, result: ScenarioResult) -> list[StepResult]:
        metadata = self.resolver(result.scenario, result.feature)
        if not metadata.test_case_ids:
            log.debug(
                "Skipping ADO publish for scenario without mapping: %s",
                result.scenario.name,
            )
            return [
                Skipped(step="update_result", reason=f"no test case for {result.key}")
            ]

        results: list[StepResult] = []
        result_ids: list[int] = []

        if self.config.update_test_cases:
            outcome = map_outcome(result.status)
            for test_case_id in metadata.test_case_ids:
                update = TestResultUpdate(
                    test_case_id=test_case_id,
                    outcome=outcome,
                    duration=result.duration,
                    error_message=result.error_message,
                    stack_trace=result.stack_trace,
                )
                result_id = await _attempt(
                    "update_result",
                    f"test case {test_case_id}",
                    self.client.update_test_result(
                        run.id, update, self._result_ids.get(test_case_id)
                    ),
                )
                if isinstance(result_id, RemoteFailure):
                    results.append(result_id)
                    continue
                result_ids.append(result_id)
                results.append(
                    Ok(
                        step="update_result",
                        detail=f"test case {test_case_id}: {outcome}",
                    )
                )
        else:
            results.append(
                Skipped(step="update_result", reason="test case updates disabled")
            )

        if result_ids and result.artifacts is not None:
            results.extend(
                await self._upload_artifacts(run.id, result_ids, result.artifacts)
            )

        if result.status == "failed" and self.config.create_bugs_on_failure:
            results.extend(await self._create_bug(result, metadata))

        return results

    async def _upload_artifacts(
        self, run_id: int, result_ids: Sequence[int], artifacts: ScenarioArtifacts
    ) -> list[StepResult]:
        results: list[StepResult] = []
        for kind, attachment_type in ARTIFACT_KINDS:
            if not getattr(self.config.uploads, kind):
                continue
            for path in getattr(artifacts, kind):
                attachment = _read_attachment(path, attachment_type, f"Test {kind}")
                if attachment is None:
                    results.append(
                        Skipped(step="upload_attachment", reason=f"missing {path}")
                    )
                    continue
                for result_id in result_ids:
                    uploaded = await _attempt(
                        "upload_attachment",
                        attachment.file_name,
                        self.client.upload_result_attachment(
                            run_id, result_id, attachment
                        ),
                    )
                    results.append(
                        uploaded
                        if isinstance(uploaded, RemoteFailure)
                        else Ok(step="upload_attachment", detail=attachment.file_name)
                    )

        uploaded_count = sum(isinstance(r, Ok) for r in results)
        if uploaded_count:
            log.info("Uploaded %d attachments for test results", uploaded_count)
        return results

    async def _create_bug(
        self, result: ScenarioResult, metadata: AdoMetadata
    ) -> list[StepResult]:
        try:
            bug = build_bug(self.config, result, metadata)
        except Exception as error:
            return [RemoteFailure(step="create_bug", error=error, detail=result.key)]
        work_item = await _attempt(
            "create_bug", result.key, self.client.create_bug(bug)
        )
        if isinstance(work_item, RemoteFailure):
            return [work_item]

        results: list[StepResult] = [
            Ok(step="create_bug", detail=f"bug {work_item.id}")
        ]
        screenshots = result.artifacts.screenshots if result.artifacts else ()
        for path in screenshots:
            attachment = _read_attachment(path, "GeneralAttachment", "Bug evidence")
            if attachment is None:
                results.append(
                    Skipped(step="upload_attachment", reason=f"missing {path}")
                )
                continue
            linked = await _attempt(
                "upload_attachment",
                attachment.file_name,
                self.client.attach_to_work_item(work_item.id, attachment),
            )
            results.append(
                linked
                if isinstance(linked, RemoteFailure)
                else Ok(step="upload_attachment", detail=attachment.file_name)
            )
        return results
