"""
Output exporter.

Outputs are declared up front (plain values or DeferredValues) and
materialized once the run has reached a fixed point. An output whose backing
value failed, or never resolved, is exported as an explicit Absent marker so
the key is always present.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from netprov.core.errors import ConfigurationError
from netprov.deferred import DeferredState, iter_deferred, materialize
from netprov.orchestration.results import RunResult

logger = structlog.get_logger()

MASK = "[secret]"


@dataclass(frozen=True)
class Absent:
    """Marker for an output whose value could not be produced."""

    reason: str

    def __str__(self) -> str:
        return f"<absent: {self.reason}>"


@dataclass(frozen=True)
class Output:
    name: str
    value: Any
    secret: bool = False


@dataclass
class ExportedOutputs:
    """Materialized outputs of a converged run."""

    values: dict[str, Any] = field(default_factory=dict)
    secret_names: set[str] = field(default_factory=set)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def __contains__(self, name: str) -> bool:
        return name in self.values

    @property
    def absent(self) -> dict[str, Absent]:
        return {k: v for k, v in self.values.items() if isinstance(v, Absent)}

    def to_dict(self, *, reveal: bool = False) -> dict[str, Any]:
        """Serializable mapping; secrets masked unless ``reveal``."""
        rendered: dict[str, Any] = {}
        for name, value in self.values.items():
            if isinstance(value, Absent):
                rendered[name] = {"absent": value.reason}
            elif name in self.secret_names and not reveal:
                rendered[name] = MASK
            else:
                rendered[name] = value
        return rendered

    def write(self, path: Path, *, reveal: bool = False) -> None:
        data = self.to_dict(reveal=reveal)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix == ".json":
            path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n")
        else:
            path.write_text(yaml.safe_dump(data, sort_keys=True, default_flow_style=False))
        logger.info("outputs_written", path=str(path), count=len(data))


class OutputExporter:
    """Collects declared outputs and resolves them after convergence."""

    def __init__(self) -> None:
        self._outputs: dict[str, Output] = {}

    def declare(self, name: str, value: Any, *, secret: bool = False) -> None:
        if name in self._outputs:
            raise ConfigurationError(f"Output '{name}' is declared twice")
        embedded_secret = any(v.secret for v in iter_deferred(value))
        self._outputs[name] = Output(name=name, value=value, secret=secret or embedded_secret)

    @property
    def names(self) -> list[str]:
        return list(self._outputs)

    def export(self, result: RunResult) -> ExportedOutputs:
        """Materialize every declared output; requires a converged run."""
        if not result.converged:
            raise RuntimeError("Outputs can only be exported after the run has converged")

        exported = ExportedOutputs()
        for name, output in self._outputs.items():
            exported.values[name] = self._resolve(output)
            if output.secret:
                exported.secret_names.add(name)

        if exported.absent:
            logger.warning("outputs_absent", outputs=sorted(exported.absent))
        return exported

    @staticmethod
    def _resolve(output: Output) -> Any:
        for deferred in iter_deferred(output.value):
            if deferred.state is DeferredState.FAILED:
                return Absent(str(deferred.error))
            if deferred.state is DeferredState.PENDING:
                return Absent(f"{deferred.label} was never resolved")
        return materialize(output.value)
