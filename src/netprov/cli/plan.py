"""
CLI command for previewing a deployment (dry run).
"""

from __future__ import annotations

import json
from typing import Optional

from netprov.cli.ux import console, error, new_table, warning
from netprov.config.loader import ConfigLoader, get_config_path
from netprov.config.secrets import SecretResolver
from netprov.core.errors import ExitCode, main_with_error_handling
from netprov.orchestration.plan_builder import PlanResult
from netprov.provisioner import Provisioner


def print_plan(plan: PlanResult, verbose: bool = False) -> None:
    """Print the plan as a table in submission order."""
    console.print()
    table = new_table("#", "Resource", "Depends on")
    for position, step in enumerate(plan.steps, start=1):
        table.add_row(str(position), step.resource, "\n".join(step.dependencies) or "-")
    console.print(table)

    if verbose:
        console.print()
        console.print(plan.to_yaml())

    for message in plan.warnings:
        warning(message)
    for message in plan.errors:
        error(message)

    console.print()
    console.print(f"[bold]{plan.total_resources} resources[/bold] would be reconciled")


@main_with_error_handling()
def plan_command(
    config_path: Optional[str] = None,
    output_format: str = "text",
    verbose: bool = False,
) -> int:
    """
    Declare the deployment and print the ordered plan.

    No secret is resolved and no resource API is called.

    Returns:
        Exit code (0 when every resource kind has a handler)
    """
    loader = ConfigLoader(get_config_path(config_path))
    settings = loader.load_settings()
    provisioner = Provisioner(settings, SecretResolver(loader.load_secrets_config()))
    plan = provisioner.plan()

    if output_format == "json":
        print(
            json.dumps(
                {
                    "steps": [step.to_dict() for step in plan.steps],
                    "errors": plan.errors,
                    "warnings": plan.warnings,
                },
                indent=2,
            )
        )
    else:
        print_plan(plan, verbose=verbose)

    return ExitCode.SUCCESS if plan.success else ExitCode.CONFIG_ERROR
