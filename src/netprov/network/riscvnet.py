"""
riscvnet deployment program.

Declares the riscvnet test network on GKE:

- static addresses for P2P (regional) and the HTTPS ingress (global)
- the GKE cluster, its node pool and the Kubernetes provider built from the
  cluster's kubeconfig
- the namespace, managed certificates, tezos-chain and tezos-faucet charts
- rpc/faucet ClusterIP services, the P2P LoadBalancer and the HTTPS ingress
- DNS A records for rpc, faucet and p2p

Templates (``values.yaml``, ``faucet_values.yaml``) are read and validated
while declaring, so a missing field fails before any external call.
"""

from __future__ import annotations

from typing import Any

import structlog

from netprov.config.document import ConfigDocument
from netprov.config.loader import TemplateLoader
from netprov.config.secrets import SecretResolver
from netprov.config.settings import Settings
from netprov.network.kubeconfig import cluster_kubeconfig
from netprov.network.stack import Resource, Stack
from netprov.orchestration.handlers import (
    KIND_CHART,
    KIND_CUSTOM_RESOURCE,
    KIND_INGRESS,
    KIND_K8S_PROVIDER,
    KIND_NAMESPACE,
    KIND_SERVICE,
)
from netprov.providers.gcp import (
    ABSENT,
    DEFAULT_NODE_POOL,
    KIND_ADDRESS,
    KIND_CLUSTER,
    KIND_DNS_RECORD,
    KIND_GLOBAL_ADDRESS,
    KIND_NODE_POOL,
)

logger = structlog.get_logger()

VALUES_TEMPLATE = "values.yaml"
FAUCET_VALUES_TEMPLATE = "faucet_values.yaml"

ACCOUNTS = ("activator", "bootstrap1", "bootstrap2", "bootstrap3", "bootstrap4", "bootstrap5")

RPC_PORT = 8732
P2P_PORT = 9732
FAUCET_PORT = 8080

NODE_OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/compute",
    "https://www.googleapis.com/auth/devstorage.read_only",
    "https://www.googleapis.com/auth/logging.write",
    "https://www.googleapis.com/auth/monitoring",
]


def secret_names(settings: Settings) -> list[str]:
    """Secrets the program requires, in declaration order."""
    names = [f"{settings.network_name}-{account}-key" for account in ACCOUNTS]
    names.append(f"{settings.network_name}-faucet-key")
    return names


def template_variables(settings: Settings) -> dict[str, str]:
    return {
        "project": settings.gcp_project,
        "region": settings.gcp_region,
        "cluster": settings.cluster_name,
        "namespace": settings.namespace,
        "domain": settings.domain,
    }


def log_export(settings: Settings, cluster: Resource, namespace: Resource) -> dict[str, Any]:
    return {
        "enabled": True,
        "destination": "gcp",
        "project": settings.gcp_project,
        "cluster": cluster.attr("name"),
        "namespace": namespace.attr("metadata.name"),
    }


def log_filter(namespace: str) -> str:
    return f'resource.type="k8s_container" AND resource.labels.namespace_name="{namespace}"'


def managed_certificate(name: str, domain: str, namespace: Resource) -> dict[str, Any]:
    return {
        "apiVersion": "networking.gke.io/v1",
        "kind": "ManagedCertificate",
        "metadata": {"name": name, "namespace": namespace.attr("metadata.name")},
        "spec": {"domains": [domain]},
    }


def service_manifest(
    name: str,
    namespace: Resource,
    *,
    port: int,
    port_name: str,
    selector: dict[str, str],
    service_type: str = "ClusterIP",
    annotations: dict[str, str] | None = None,
    load_balancer_ip: Any = None,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name, "namespace": namespace.attr("metadata.name")}
    if annotations:
        metadata["annotations"] = annotations
    spec: dict[str, Any] = {
        "type": service_type,
        "ports": [{"port": port, "targetPort": port, "protocol": "TCP", "name": port_name}],
        "selector": selector,
    }
    if load_balancer_ip is not None:
        spec["loadBalancerIP"] = load_balancer_ip
    return {"apiVersion": "v1", "kind": "Service", "metadata": metadata, "spec": spec}


def ingress_rule(host: str, service: Resource, port: int) -> dict[str, Any]:
    return {
        "host": host,
        "http": {
            "paths": [
                {
                    "path": "/*",
                    "pathType": "ImplementationSpecific",
                    "backend": {
                        "service": {
                            "name": service.attr("metadata.name"),
                            "port": {"number": port},
                        }
                    },
                }
            ]
        },
    }


def tezos_values(
    template: ConfigDocument,
    secrets: SecretResolver,
    settings: Settings,
    cluster: Resource,
    namespace: Resource,
) -> dict[str, Any]:
    """Chain values: template plus account keys plus the log export block."""
    net = settings.network_name
    keys = {
        f"accounts.{account}.key": secrets.resolve_deferred(f"{net}-{account}-key")
        for account in ACCOUNTS
    }
    document = template.substituted(template_variables(settings)).with_values(keys)
    document = document.with_value(
        "logExport", log_export(settings, cluster, namespace), create=True
    )
    return document.to_dict()


def faucet_values(
    template: ConfigDocument,
    secrets: SecretResolver,
    settings: Settings,
    cluster: Resource,
    namespace: Resource,
) -> dict[str, Any]:
    """Faucet values: endpoints, faucet key and log export; captcha disabled."""
    document = template.substituted(template_variables(settings)).with_values(
        {
            "config.application.backendUrl": f"https://faucet.{settings.domain}",
            "config.network.rpcUrl": f"https://rpc.{settings.domain}",
        }
    )
    document = document.with_values(
        {
            "authorizedHost": "*",
            "enableCaptcha": False,
            "faucetPrivateKey": secrets.resolve_deferred(f"{settings.network_name}-faucet-key"),
            "logExport": log_export(settings, cluster, namespace),
        },
        create=True,
    )
    return document.to_dict()


def declare(
    stack: Stack,
    settings: Settings,
    templates: TemplateLoader,
    secrets: SecretResolver,
) -> Stack:
    """Declare every riscvnet resource and output on ``stack``."""
    net = settings.network_name
    region = settings.gcp_region
    rpc_host = f"rpc.{settings.domain}"
    faucet_host = f"faucet.{settings.domain}"
    p2p_host = f"p2p.{settings.domain}"
    rpc_cert_name = f"{net}-rpc-ssl-cert"
    faucet_cert_name = f"{net}-faucet-ssl-cert"

    # Templates are validated here, before anything is submitted
    values_template = templates.load(VALUES_TEMPLATE)
    faucet_template = templates.load(FAUCET_VALUES_TEMPLATE)

    p2p_ip = stack.resource(
        KIND_ADDRESS,
        f"{net}-p2p-static-ip",
        {"addressType": "EXTERNAL"},
        scope=region,
    )
    ingress_ip = stack.resource(KIND_GLOBAL_ADDRESS, f"{net}-ingress-static-ip")

    cluster = stack.resource(
        KIND_CLUSTER,
        settings.cluster_name,
        {
            "initialNodeCount": 1,
            "network": settings.network,
            "subnetwork": settings.subnetwork,
            "loggingConfig": {
                "componentConfig": {"enableComponents": ["SYSTEM_COMPONENTS", "WORKLOADS"]}
            },
            "monitoringConfig": {
                "componentConfig": {"enableComponents": ["SYSTEM_COMPONENTS"]}
            },
        },
        scope=region,
    )

    node_pool = stack.resource(
        KIND_NODE_POOL,
        f"{net}-node-pool",
        {
            "cluster": cluster.attr("name"),
            "initialNodeCount": settings.node_count,
            "config": {
                "machineType": settings.machine_type,
                "oauthScopes": list(NODE_OAUTH_SCOPES),
            },
        },
        scope=f"{region}/{settings.cluster_name}",
        ignore_changes=["config"],
    )

    # Workloads run on the dedicated pool only
    stack.resource(
        KIND_NODE_POOL,
        DEFAULT_NODE_POOL,
        {"cluster": cluster.attr("name"), ABSENT: True},
        scope=f"{region}/{settings.cluster_name}",
        depends_on=[node_pool],
    )

    kubeconfig = cluster_kubeconfig(cluster, project=settings.gcp_project, region=region)
    k8s = stack.resource(
        KIND_K8S_PROVIDER, "gke-k8s", {"kubeconfig": kubeconfig}, depends_on=[node_pool]
    )
    provider = k8s.attr("kubeconfig")

    namespace = stack.resource(
        KIND_NAMESPACE,
        settings.namespace,
        {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {
                "name": settings.namespace,
                "labels": {"app": net, "environment": "production"},
            },
        },
        provider=provider,
    )

    rpc_cert = stack.resource(
        KIND_CUSTOM_RESOURCE,
        rpc_cert_name,
        managed_certificate(rpc_cert_name, rpc_host, namespace),
        scope=settings.namespace,
        provider=provider,
    )
    faucet_cert = stack.resource(
        KIND_CUSTOM_RESOURCE,
        faucet_cert_name,
        managed_certificate(faucet_cert_name, faucet_host, namespace),
        scope=settings.namespace,
        provider=provider,
    )

    tezos_chart = stack.resource(
        KIND_CHART,
        f"{net}-tezos",
        {
            "chart": "tezos-chain",
            "version": settings.chart_version,
            "repo": settings.chart_repo,
            "namespace": namespace.attr("metadata.name"),
            "values": tezos_values(values_template, secrets, settings, cluster, namespace),
        },
        scope=settings.namespace,
        provider=provider,
        depends_on=[namespace],
    )
    faucet_chart = stack.resource(
        KIND_CHART,
        f"{net}-faucet",
        {
            "chart": "tezos-faucet",
            "version": settings.chart_version,
            "repo": settings.chart_repo,
            "namespace": namespace.attr("metadata.name"),
            "values": faucet_values(faucet_template, secrets, settings, cluster, namespace),
        },
        scope=settings.namespace,
        provider=provider,
        depends_on=[namespace],
    )

    rpc_service = stack.resource(
        KIND_SERVICE,
        f"{net}-rpc-service",
        service_manifest(
            f"{net}-rpc-service",
            namespace,
            port=RPC_PORT,
            port_name="rpc",
            selector={"node_class": "tezos-baking-node"},
            annotations={
                "cloud.google.com/neg": '{"ingress":true}',
                "cloud.google.com/backend-config": '{"default": "rpc-backend-config"}',
            },
        ),
        scope=settings.namespace,
        provider=provider,
        depends_on=[tezos_chart],
    )

    stack.resource(
        KIND_CUSTOM_RESOURCE,
        "rpc-backend-config",
        {
            "apiVersion": "cloud.google.com/v1",
            "kind": "BackendConfig",
            "metadata": {"name": "rpc-backend-config", "namespace": namespace.attr("metadata.name")},
            "spec": {
                "healthCheck": {
                    "checkIntervalSec": 10,
                    "timeoutSec": 5,
                    "healthyThreshold": 1,
                    "unhealthyThreshold": 3,
                    "type": "HTTP",
                    "port": RPC_PORT,
                    "requestPath": "/version",
                },
                "timeoutSec": 30,
            },
        },
        scope=settings.namespace,
        provider=provider,
    )

    faucet_service = stack.resource(
        KIND_SERVICE,
        f"{net}-faucet-service",
        service_manifest(
            f"{net}-faucet-service",
            namespace,
            port=FAUCET_PORT,
            port_name="http",
            selector={"app": "tezos-faucet"},
        ),
        scope=settings.namespace,
        provider=provider,
        depends_on=[faucet_chart],
    )

    p2p_lb = stack.resource(
        KIND_SERVICE,
        f"{net}-p2p-lb",
        service_manifest(
            f"{net}-p2p-lb",
            namespace,
            port=P2P_PORT,
            port_name="p2p",
            selector={"appType": "octez-node"},
            service_type="LoadBalancer",
            load_balancer_ip=p2p_ip.attr("address"),
        ),
        scope=settings.namespace,
        provider=provider,
        depends_on=[tezos_chart],
    )

    stack.resource(
        KIND_INGRESS,
        f"{net}-https-ingress",
        {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "Ingress",
            "metadata": {
                "name": f"{net}-https-ingress",
                "namespace": namespace.attr("metadata.name"),
                "annotations": {
                    "kubernetes.io/ingress.global-static-ip-name": ingress_ip.attr("name"),
                    "networking.gke.io/managed-certificates": f"{rpc_cert_name},{faucet_cert_name}",
                    "kubernetes.io/ingress.class": "gce",
                },
            },
            "spec": {
                "rules": [
                    ingress_rule(rpc_host, rpc_service, RPC_PORT),
                    ingress_rule(faucet_host, faucet_service, FAUCET_PORT),
                ]
            },
        },
        scope=settings.namespace,
        provider=provider,
        depends_on=[rpc_service, faucet_service, rpc_cert, faucet_cert],
    )

    for label, host, address in (
        ("rpc", rpc_host, ingress_ip.attr("address")),
        ("faucet", faucet_host, ingress_ip.attr("address")),
        ("p2p", p2p_host, p2p_lb.attr("status.loadBalancer.ingress.0.ip")),
    ):
        stack.resource(
            KIND_DNS_RECORD,
            f"{net}-{label}-dns",
            {
                "managedZone": settings.dns_zone,
                "name": f"{host}.",
                "type": "A",
                "ttl": settings.dns_ttl,
                "rrdatas": [address],
            },
            scope=settings.dns_zone,
        )

    stack.export("clusterName", cluster.attr("name"))
    stack.export("kubeconfig", kubeconfig)
    stack.export("namespace", namespace.attr("metadata.name"))
    stack.export("ingressStaticIp", ingress_ip.attr("address"))
    stack.export("rpcDomain", rpc_host)
    stack.export("rpcEndpoint", f"https://{rpc_host}")
    stack.export("faucetDomain", faucet_host)
    stack.export("faucetEndpoint", f"https://{faucet_host}")
    stack.export("p2pStaticIp", p2p_ip.attr("address"))
    stack.export("p2pDomain", p2p_host)
    stack.export("p2pEndpoint", f"{p2p_host}:{P2P_PORT}")
    stack.export("rpcSslCert", rpc_cert_name)
    stack.export("faucetSslCert", faucet_cert_name)
    stack.export("logFilter", log_filter(settings.namespace))

    logger.info("program_declared", stack=stack.name, resources=len(stack))
    return stack
