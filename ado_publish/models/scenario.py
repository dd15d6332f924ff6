"""Models for scenarios and their execution results, as reported by the runner."""

from collections.abc import Sequence
from typing import Literal

from pydantic import Field

from ado_publish.models.base import Model

type ScenarioStatus = Literal["passed", "failed", "skipped"]


class Step(Model):
    """A single Gherkin step of a scenario."""

    keyword: str = Field(..., description="Step keyword (Given, When, Then, ...)")
    text: str = Field(..., description="Step text without the keyword")


class Feature(Model):
    """Feature owning one or more scenarios."""

    name: str = Field(..., description="Feature name")
    tags: Sequence[str] = Field(default_factory=list, description="Feature tags")


class Scenario(Model):
    """Scenario as parsed from a feature file."""

    name: str = Field(..., description="Scenario name")
    tags: Sequence[str] = Field(default_factory=list, description="Scenario tags")
    steps: Sequence[Step] = Field(default_factory=list, description="Scenario steps")


class ScenarioArtifacts(Model):
    """Files captured while a scenario was running."""

    screenshots: Sequence[str] = Field(default_factory=list)
    videos: Sequence[str] = Field(default_factory=list)
    har: Sequence[str] = Field(default_factory=list)
    traces: Sequence[str] = Field(default_factory=list)
    logs: Sequence[str] = Field(default_factory=list)


class ScenarioResult(Model):
    """Outcome of one finished scenario."""

    scenario: Scenario
    feature: Feature
    status: ScenarioStatus
    duration: float = Field(default=0, ge=0, description="Duration in milliseconds")
    error_message: str | None = None
    stack_trace: str | None = None
    artifacts: ScenarioArtifacts | None = None

    @property
    def key(self) -> str:
        """Unique key of the scenario within a suite."""
        return scenario_key(self.scenario, self.feature)


def scenario_key(scenario: Scenario, feature: Feature) -> str:
    """Build the ``feature::scenario`` key used to de-duplicate results."""
    return f"{feature.name}::{scenario.name}"
