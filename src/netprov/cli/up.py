"""
CLI command for provisioning a deployment.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

from netprov.cli.ux import console, new_table, status_text
from netprov.config.loader import ConfigLoader, get_config_path
from netprov.config.secrets import SecretResolver
from netprov.core.errors import main_with_error_handling
from netprov.outputs import Absent
from netprov.provisioner import ProvisionResult, Provisioner


def print_report(result: ProvisionResult, verbose: bool = False) -> None:
    """Every node's terminal status, then every output."""
    console.print()
    nodes = new_table("Resource", "Status", "Error")
    for report in result.run.nodes.values():
        message = report.error or ""
        if not verbose and len(message) > 80:
            message = message[:77] + "..."
        nodes.add_row(str(report.key), status_text(report.status), message)
    console.print(nodes)

    console.print()
    outputs = new_table("Output", "Value")
    for name, value in result.outputs.to_dict().items():
        raw = result.outputs[name]
        shown = f"[warning]{raw}[/warning]" if isinstance(raw, Absent) else str(value)
        outputs.add_row(name, shown)
    console.print(outputs)

    console.print()
    counts = ", ".join(f"{n} {status}" for status, n in sorted(result.run.counts().items()))
    duration = f" in {result.run.duration_seconds:.1f}s"
    if result.success:
        console.print(f"[bold green]Converged{duration}[/bold green] ({counts})")
    else:
        console.print(f"[bold yellow]Converged with errors{duration}[/bold yellow] ({counts})")
    console.print()


def print_json(result: ProvisionResult) -> None:
    output = {**result.run.to_dict(), "outputs": result.outputs.to_dict()}
    print(json.dumps(output, indent=2, default=str))


@main_with_error_handling()
def up_command(
    config_path: Optional[str] = None,
    outputs_path: Optional[str] = None,
    output_format: str = "text",
    verbose: bool = False,
) -> int:
    """
    Provision the deployment and converge every resource.

    Returns:
        0 when every resource is Ready, 1 on partial failure, 11 when nothing
        became Ready
    """
    loader = ConfigLoader(get_config_path(config_path))
    settings = loader.load_settings()
    provisioner = Provisioner(settings, SecretResolver(loader.load_secrets_config()))

    result = asyncio.run(provisioner.up())

    if output_format == "json":
        print_json(result)
    else:
        print_report(result, verbose=verbose)

    if outputs_path:
        result.outputs.write(Path(outputs_path))

    return result.exit_code
