"""Resolve Azure DevOps identifiers from scenario and feature tags.

Supported tags (case-insensitive, the leading ``@`` is optional)::

    @TestCaseId:419
    @TestCaseId:{419,420,421}
    @TestPlanId:417
    @TestSuiteId:418
    @BuildId:123
    @ReleaseId:456

Scenario tags are read before feature tags, so a scenario overrides the plan,
suite, build and release of its feature while test case IDs from both are
combined.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ado_publish.models.scenario import Feature, Scenario

TEST_CASE_PATTERN = re.compile(r"@?TestCaseId:(?:\{([^}]+)\}|(\d+))", re.IGNORECASE)
TEST_PLAN_PATTERN = re.compile(r"@?TestPlanId:(\d+)", re.IGNORECASE)
TEST_SUITE_PATTERN = re.compile(r"@?TestSuiteId:(\d+)", re.IGNORECASE)
BUILD_PATTERN = re.compile(r"@?BuildId:(\d+)", re.IGNORECASE)
RELEASE_PATTERN = re.compile(r"@?ReleaseId:(\d+)", re.IGNORECASE)


@dataclass(frozen=True, kw_only=True)
class PlanSuite:
    """A (test plan, test suite) pair; the unit test points are fetched by."""

    plan_id: int
    suite_id: int

    def __str__(self) -> str:
        return f"plan {self.plan_id}, suite {self.suite_id}"


@dataclass(frozen=True, kw_only=True)
class AdoMetadata:
    """Azure DevOps identifiers a scenario maps to."""

    test_case_ids: tuple[int, ...] = ()
    test_plan_id: int | None = None
    test_suite_id: int | None = None
    build_id: str | None = None
    release_id: str | None = None

    @property
    def test_case_id(self) -> int | None:
        """Primary test case ID."""
        return self.test_case_ids[0] if self.test_case_ids else None

    @property
    def plan_suite(self) -> PlanSuite | None:
        """Plan/suite pair, if the mapping is complete enough to fetch points."""
        if (
            not self.test_case_ids
            or self.test_plan_id is None
            or self.test_suite_id is None
        ):
            return None
        return PlanSuite(plan_id=self.test_plan_id, suite_id=self.test_suite_id)


type MetadataResolver = Callable[[Scenario, Feature | None], AdoMetadata]


def extract_metadata(
    scenario: Scenario, feature: Feature | None = None
) -> AdoMetadata:
    """Extract Azure DevOps metadata from scenario and feature tags."""
    tags = [*scenario.tags, *(feature.tags if feature is not None else ())]

    test_case_ids: list[int] = []
    plan_id: int | None = None
    suite_id: int | None = None
    build_id: str | None = None
    release_id: str | None = None

    for tag in tags:
        if match := TEST_CASE_PATTERN.search(tag):
            ids = parse_test_case_ids(match.group(1) or match.group(2))
            test_case_ids.extend(i for i in ids if i not in test_case_ids)
        if plan_id is None and (match := TEST_PLAN_PATTERN.search(tag)):
            plan_id = int(match.group(1))
        if suite_id is None and (match := TEST_SUITE_PATTERN.search(tag)):
            suite_id = int(match.group(1))
        if build_id is None and (match := BUILD_PATTERN.search(tag)):
            build_id = match.group(1)
        if release_id is None and (match := RELEASE_PATTERN.search(tag)):
            release_id = match.group(1)

    return AdoMetadata(
        test_case_ids=tuple(test_case_ids),
        test_plan_id=plan_id,
        test_suite_id=suite_id,
        build_id=build_id,
        release_id=release_id,
    )


def has_ado_mapping(scenario: Scenario, feature: Feature | None = None) -> bool:
    """Check if the scenario maps to at least one test case."""
    return len(extract_metadata(scenario, feature).test_case_ids) > 0


def parse_test_case_ids(value: str) -> list[int]:
    """Parse ``419``, ``419,420`` or ``{419, 420}`` into unique IDs."""
    ids: list[int] = []
    for part in value.strip().removeprefix("{").removesuffix("}").split(","):
        part = part.strip()
        if part.isdigit() and int(part) not in ids:
            ids.append(int(part))
    return ids


def format_test_case_tag(ids: Sequence[int]) -> str:
    """Format test case IDs as a single tag."""
    if not ids:
        return ""
    if len(ids) == 1:
        return f"@TestCaseId:{ids[0]}"
    return f"@TestCaseId:{{{','.join(str(i) for i in ids)}}}"


def format_ado_tags(metadata: AdoMetadata) -> list[str]:
    """Format metadata back into tags."""
    tags: list[str] = []
    if metadata.test_plan_id is not None:
        tags.append(f"@TestPlanId:{metadata.test_plan_id}")
    if metadata.test_suite_id is not None:
        tags.append(f"@TestSuiteId:{metadata.test_suite_id}")
    if metadata.test_case_ids:
        tags.append(format_test_case_tag(metadata.test_case_ids))
    return tags
