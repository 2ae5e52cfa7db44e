"""
Run driver.

Sequence of one ``up`` run:

1. declare the program (templates read and validated, secret refs created)
2. build the graph (duplicates, undeclared dependencies and cycles rejected)
3. resolve every secret
4. reconcile the graph to a fixed point
5. export outputs

Steps 1-3 make no resource API call, so a configuration error always leaves
the external systems untouched.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable

import google.auth
import google.auth.exceptions
import google.auth.transport.requests

from netprov.config.loader import TemplateLoader
from netprov.config.secrets import SecretResolver
from netprov.config.settings import Settings
from netprov.core.errors import ConfigurationError, ExitCode
from netprov.graph.models import NodeStatus
from netprov.logging import bind_context
from netprov.network import riscvnet
from netprov.network.stack import Stack
from netprov.orchestration.engine import EnginePolicy, Reconciler
from netprov.orchestration.handlers import register_default_handlers
from netprov.orchestration.plan_builder import PlanBuilder, PlanResult
from netprov.orchestration.registry import HandlerRegistry
from netprov.orchestration.results import RunResult
from netprov.outputs import ExportedOutputs
from netprov.providers.gcp import CloudDNSProvider, GCPProvider, GoogleAPIClient
from netprov.providers.helm import HelmInstaller
from netprov.providers.kubernetes import KubernetesProvider

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

Program = Callable[[Stack, Settings, TemplateLoader, SecretResolver], Stack]


@dataclass
class ProvisionResult:
    """Outcome of one ``up`` run."""

    run: RunResult
    outputs: ExportedOutputs

    @property
    def success(self) -> bool:
        return self.run.success

    @property
    def exit_code(self) -> ExitCode:
        if self.run.success:
            return ExitCode.SUCCESS
        if self.run.with_status(NodeStatus.READY):
            return ExitCode.PARTIAL
        return ExitCode.RESOURCE_ERROR


def default_access_token() -> str:
    """Access token from Application Default Credentials."""
    try:
        credentials, _project = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        credentials.refresh(google.auth.transport.requests.Request())
    except google.auth.exceptions.GoogleAuthError as e:
        raise ConfigurationError(f"No usable Google credentials: {e}") from e
    return credentials.token


def build_registry(settings: Settings, *, token: str | None = None) -> HandlerRegistry:
    """Registry wired to the live GCP, Kubernetes and helm providers."""

    def client(base_url: str) -> GoogleAPIClient:
        return GoogleAPIClient(base_url, token, timeout=settings.http_timeout)

    registry = HandlerRegistry()
    register_default_handlers(
        registry,
        cloud=GCPProvider(
            settings.gcp_project,
            compute=client(settings.gcp_compute_url),
            container=client(settings.gcp_container_url),
        ),
        dns=CloudDNSProvider(settings.gcp_project, client=client(settings.gcp_dns_url)),
        charts=HelmInstaller(settings.helm_binary),
        kubernetes_factory=KubernetesProvider.from_kubeconfig,
    )
    return registry


class Provisioner:
    """Declares a program and drives it to convergence."""

    def __init__(
        self,
        settings: Settings,
        secrets: SecretResolver,
        *,
        registry: HandlerRegistry | None = None,
        templates: TemplateLoader | None = None,
        program: Program = riscvnet.declare,
    ) -> None:
        self.settings = settings
        self.secrets = secrets
        self.templates = templates or TemplateLoader(settings.templates_dir)
        self._registry = registry
        self._program = program

    def declare(self) -> Stack:
        stack = Stack(self.settings.network_name)
        return self._program(stack, self.settings, self.templates, self.secrets)

    def plan(self) -> PlanResult:
        """Dry run: declare and order the graph without touching any API."""
        graph = self.declare().build()
        registry = self._registry or build_registry(self.settings)
        return PlanBuilder(registry).build(graph)

    async def up(self) -> ProvisionResult:
        stack = self.declare()
        graph = stack.build()
        await self.secrets.resolve_all()

        registry = self._registry
        if registry is None:
            token = self.settings.gcp_access_token or await asyncio.to_thread(default_access_token)
            registry = build_registry(self.settings, token=token)

        log = bind_context(stack=stack.name)
        log.info("provisioning_started", resources=len(graph))
        result = await Reconciler(registry, EnginePolicy.from_settings(self.settings)).run(graph)
        outputs = stack.outputs.export(result)
        log.info("provisioning_finished", success=result.success, **result.counts())
        return ProvisionResult(run=result, outputs=outputs)
