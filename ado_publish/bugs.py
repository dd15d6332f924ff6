"""Bug work items for failed scenarios."""

from ado_publish.config import AdoConfig
from ado_publish.models.scenario import ScenarioResult
from ado_publish.models.submission import Bug
from ado_publish.tags import AdoMetadata

MAX_TITLE_LENGTH = 255
MAX_TITLE_ERROR_LENGTH = 100


def format_bug_title(template: str, result: ScenarioResult) -> str:
    """Render the bug title template for a failed scenario.

    The template may use ``{scenario_name}``, ``{feature_name}`` and
    ``{error_message}`` (first line of the error, shortened).
    """
    error_line = (result.error_message or "").strip().splitlines()
    error_message = error_line[0] if error_line else ""
    if len(error_message) > MAX_TITLE_ERROR_LENGTH:
        error_message = error_message[: MAX_TITLE_ERROR_LENGTH - 3] + "..."

    title = template.format(
        scenario_name=result.scenario.name,
        feature_name=result.feature.name,
        error_message=error_message,
    )
    return title[:MAX_TITLE_LENGTH]


def format_bug_description(result: ScenarioResult, metadata: AdoMetadata) -> str:
    """Describe a failed scenario for the bug body."""
    lines = [
        f"**Test Scenario:** {result.scenario.name}",
        f"**Feature:** {result.feature.name}",
        f"**Status:** {result.status}",
        f"**Duration:** {result.duration:g}ms",
        "",
    ]

    if metadata.test_case_ids:
        ids = ", ".join(str(i) for i in metadata.test_case_ids)
        lines.append(f"**Test Cases:** {ids}")

    if result.error_message:
        lines.extend(["", "**Error Message:**", "```", result.error_message, "```"])

    if result.stack_trace:
        lines.extend(["", "**Stack Trace:**", "```", result.stack_trace, "```"])

    if result.scenario.steps:
        lines.extend(["", "**Test Steps:**"])
        lines.extend(f"- {step.keyword} {step.text}" for step in result.scenario.steps)

    return "\n".join(lines)


def build_bug(
    config: AdoConfig, result: ScenarioResult, metadata: AdoMetadata
) -> Bug:
    """Build the bug to file for a failed scenario."""
    template = config.bug_template
    description = format_bug_description(result, metadata)
    return Bug(
        title=format_bug_title(template.title, result),
        description=description,
        repro_steps=description,
        severity=template.severity,
        priority=template.priority,
        assigned_to=template.assigned_to or config.default_bug_assignee,
        area_path=template.area_path,
        iteration_path=template.iteration_path,
        tags=tuple(template.tags),
        found_in_build=metadata.build_id,
        tested_by=metadata.test_case_ids,
    )
