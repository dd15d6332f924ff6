"""CLI entry point for publishing test results to Azure DevOps."""

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from ado_publish.config import AdoConfig, config_from_env
from ado_publish.integration import AdoIntegration
from ado_publish.models.result import Ok, RemoteFailure, Skipped, StepResult
from ado_publish.models.scenario import ScenarioResult

STATUS_SYMBOLS = {
    "published": "✅",
    "skipped": "⏭️",
    "failed": "❌",
}

SCENARIO_RESULTS = TypeAdapter(list[ScenarioResult])


def step_status(result: StepResult) -> str:
    """Summary status of a publishing step."""
    if isinstance(result, Ok):
        return "published"
    if isinstance(result, Skipped):
        return "skipped"
    return "failed"


def step_message(result: StepResult) -> str | None:
    if isinstance(result, RemoteFailure):
        return str(result.error) or repr(result.error)
    if isinstance(result, Skipped):
        return result.reason
    return result.detail


def log_results_summary(log: logging.Logger, results: Sequence[StepResult]) -> None:
    """Log a formatted summary of the publishing steps."""
    log.info("=" * 80)
    log.info("Azure DevOps Publishing Summary:")
    log.info("=" * 80)

    for result in results:
        status = step_status(result)
        log.info("%s %s: %s", STATUS_SYMBOLS[status], result.step, status)
        if message := step_message(result):
            log.info("  %s", message)


def format_output(results: Sequence[StepResult]) -> dict[str, Any]:
    """Format step results for JSON output."""
    all_results = [
        {
            "step": result.step,
            "status": step_status(result),
            "message": step_message(result),
        }
        for result in results
    ]

    return {
        "total": len(all_results),
        "published": sum(1 for r in all_results if r["status"] == "published"),
        "skipped": sum(1 for r in all_results if r["status"] == "skipped"),
        "failed": sum(1 for r in all_results if r["status"] == "failed"),
        "results": all_results,
    }


def load_config(config_json: str | None) -> AdoConfig:
    """Load configuration from JSON, or from ``ADO_*`` environment variables."""
    if config_json:
        return AdoConfig.model_validate_json(config_json)
    return config_from_env(os.environ)


async def load_scenario_results(results_path: Path) -> Sequence[ScenarioResult]:
    """Load the scenario results of a finished suite from a JSON file."""
    content = await asyncio.to_thread(results_path.read_text)
    return SCENARIO_RESULTS.validate_json(content)


async def publish(
    config: AdoConfig,
    scenario_results: Sequence[ScenarioResult],
    run_name: str | None = None,
    parallel: bool = False,
) -> Sequence[StepResult]:
    """Replay a finished suite through the runner lifecycle hooks."""
    results: list[StepResult] = []
    async with AdoIntegration.from_config(config, parallel) as integration:
        results.extend(
            await integration.collect_scenarios(
                [(r.scenario, r.feature) for r in scenario_results]
            )
        )
        if (started := await integration.before_all_tests(run_name)) is not None:
            results.append(started)

        for scenario_result in scenario_results:
            integration.before_scenario(
                scenario_result.scenario, scenario_result.feature
            )
            results.extend(
                await integration.after_scenario(
                    scenario_result.scenario,
                    scenario_result.feature,
                    scenario_result.status,
                    scenario_result.duration,
                    scenario_result.error_message,
                    scenario_result.stack_trace,
                    scenario_result.artifacts,
                )
            )

        results.extend(await integration.after_all_tests())
    return results


async def run(
    config_json: str | None,
    results_path: Path,
    run_name: str | None = None,
    parallel: bool = False,
) -> int:
    """Publish scenario results and return exit code.

    Publishing problems are reported but never fail the command; only
    invalid configuration or an unreadable results file do.
    """
    log = logging.getLogger("ado_publish")

    try:
        config = load_config(config_json)
    except ValueError as error:
        log.error("Invalid Azure DevOps configuration: %s", error)
        return 2

    if not config.enabled:
        log.info("Azure DevOps integration disabled")
        print(json.dumps(format_output([])))
        return 0

    try:
        scenario_results = await load_scenario_results(results_path)
    except (OSError, ValidationError) as error:
        log.error("Cannot read scenario results from %s: %s", results_path, error)
        return 2

    log.info(
        "Publishing %d scenario results to %s/%s",
        len(scenario_results),
        config.organization,
        config.project,
    )
    results = await publish(config, scenario_results, run_name, parallel)

    log_results_summary(log, results)

    output = format_output(results)
    print(json.dumps(output, indent=2))

    return 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Publish BDD test results to Azure DevOps Test Plans"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="JSON configuration (defaults to ADO_* environment variables)",
    )
    parser.add_argument(
        "--results",
        type=Path,
        required=True,
        help="Path to a JSON list of scenario results",
    )
    parser.add_argument(
        "--run-name",
        default=None,
        help="Name of the test run to create",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Buffer results and publish them in one pass at the end",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(
        run(
            config_json=args.config,
            results_path=args.results,
            run_name=args.run_name,
            parallel=args.parallel,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
