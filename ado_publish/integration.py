"""Lifecycle hooks connecting a BDD test runner to the result publisher."""

import logging
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from ado_publish.config import AdoConfig
from ado_publish.models.result import StepResult
from ado_publish.models.scenario import (
    Feature,
    Scenario,
    ScenarioArtifacts,
    ScenarioResult,
    ScenarioStatus,
)
from ado_publish.publisher import AdoPublisher
from ado_publish.tags import AdoMetadata

log = logging.getLogger(__name__)


def scenario_result_from_worker(
    worker_result: Mapping[str, Any], scenario: Scenario, feature: Feature
) -> ScenarioResult:
    """Build a scenario result from the record a parallel worker reports.

    The record holds ``status``, ``duration`` (ms), ``error``, and optionally
    ``stack_trace`` and ``artifacts``. A missing status counts as skipped.
    """
    return ScenarioResult(
        scenario=scenario,
        feature=feature,
        status=worker_result.get("status") or "skipped",
        duration=worker_result.get("duration") or 0,
        error_message=worker_result.get("error"),
        stack_trace=worker_result.get("stack_trace"),
        artifacts=worker_result.get("artifacts"),
    )


@dataclass(kw_only=True)
class AdoIntegration:
    """Forwards test runner lifecycle events to an ``AdoPublisher``.

    In parallel mode finished scenarios are buffered and published when the
    suite completes; otherwise each one is published as it finishes.
    """

    publisher: AdoPublisher
    parallel: bool = False

    _initialized: bool = field(default=False, init=False)
    _scenarios: list[tuple[Scenario, Feature]] = field(
        default_factory=list, init=False
    )

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: AdoConfig, parallel: bool = False
    ) -> AsyncGenerator["AdoIntegration", None]:
        """Create integration with managed publisher lifecycle."""
        async with AdoPublisher.from_config(config) as publisher:
            integration = cls(publisher=publisher)
            integration.initialize(parallel)
            yield integration

    @property
    def scenarios(self) -> Sequence[tuple[Scenario, Feature]]:
        """Scenarios announced for the current suite."""
        return tuple(self._scenarios)

    def is_enabled(self) -> bool:
        """Check if the Azure DevOps integration is enabled."""
        return self.publisher.is_enabled()

    def initialize(self, parallel: bool = False) -> None:
        """Select the execution mode; later calls have no effect."""
        if self._initialized:
            return

        self.parallel = parallel
        self._initialized = True
        if self.is_enabled():
            log.info(
                "Azure DevOps integration enabled (%s mode)",
                "parallel" if parallel else "sequential",
            )

    async def collect_scenarios(
        self, scenarios: Sequence[tuple[Scenario, Feature]]
    ) -> Sequence[StepResult]:
        """Announce the scenarios about to run, before execution starts."""
        self._scenarios = list(scenarios)
        if not self.is_enabled():
            return []
        return await self.publisher.collect_test_points(self._scenarios)

    async def before_all_tests(self, run_name: str | None = None) -> StepResult | None:
        """Start the test run for the collected scenarios."""
        if not self.is_enabled():
            return None
        return await self.publisher.start_test_run(run_name)

    def before_scenario(self, scenario: Scenario, feature: Feature) -> None:
        """Log the test cases a starting scenario reports to."""
        if not self.is_enabled():
            return

        metadata = self.get_ado_metadata(scenario, feature)
        if metadata.test_case_ids:
            log.info(
                "Scenario mapped to ADO test cases: %s",
                ", ".join(str(i) for i in metadata.test_case_ids),
            )

    async def after_scenario(
        self,
        scenario: Scenario,
        feature: Feature,
        status: ScenarioStatus,
        duration: float,
        error_message: str | None = None,
        stack_trace: str | None = None,
        artifacts: ScenarioArtifacts | None = None,
    ) -> Sequence[StepResult]:
        """Report a finished scenario.

        Returns:
            Step results of publishing it, empty when the result was buffered

        """
        if not self.is_enabled():
            return []

        result = ScenarioResult(
            scenario=scenario,
            feature=feature,
            status=status,
            duration=duration,
            error_message=error_message,
            stack_trace=stack_trace,
            artifacts=artifacts,
        )
        if self.parallel:
            self.publisher.add_scenario_result(result)
            return []
        return await self.publisher.publish_scenario_result(result)

    async def after_all_tests(self) -> Sequence[StepResult]:
        """Publish buffered results and complete the test run."""
        if not self.is_enabled():
            return []

        results: list[StepResult] = []
        if self.parallel:
            results.extend(await self.publisher.publish_all_results())
        results.extend(await self.publisher.complete_test_run())
        return results

    def has_ado_mapping(self, scenario: Scenario, feature: Feature) -> bool:
        """Check if a scenario maps to at least one test case."""
        return bool(self.get_ado_metadata(scenario, feature).test_case_ids)

    def get_ado_metadata(self, scenario: Scenario, feature: Feature) -> AdoMetadata:
        """Azure DevOps identifiers of a scenario."""
        return self.publisher.resolver(scenario, feature)

    def scenario_result_from_worker(
        self, worker_result: Mapping[str, Any], scenario: Scenario, feature: Feature
    ) -> ScenarioResult:
        """Build a scenario result from a parallel worker's record."""
        return scenario_result_from_worker(worker_result, scenario, feature)
