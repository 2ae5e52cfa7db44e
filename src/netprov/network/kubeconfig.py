"""Kubeconfig rendering for GKE clusters."""

from __future__ import annotations

from typing import Any

import yaml

from netprov.deferred import DeferredValue
from netprov.network.stack import Resource

AUTH_PLUGIN = "gke-gcloud-auth-plugin"
AUTH_PLUGIN_HINT = (
    "Install gke-gcloud-auth-plugin for use with kubectl by following "
    "https://cloud.google.com/blog/products/containers-kubernetes/kubectl-auth-changes-in-gke"
)


def context_name(project: str, region: str, cluster: str) -> str:
    return f"gke_{project}_{region}_{cluster}"


def render_kubeconfig(
    *, project: str, region: str, cluster: str, endpoint: str, ca_certificate: str
) -> str:
    """Render a kubeconfig that authenticates through the gcloud auth plugin."""
    context = context_name(project, region, cluster)
    document: dict[str, Any] = {
        "apiVersion": "v1",
        "clusters": [
            {
                "cluster": {
                    "certificate-authority-data": ca_certificate,
                    "server": f"https://{endpoint}",
                },
                "name": context,
            }
        ],
        "contexts": [{"context": {"cluster": context, "user": context}, "name": context}],
        "current-context": context,
        "kind": "Config",
        "preferences": {},
        "users": [
            {
                "name": context,
                "user": {
                    "exec": {
                        "apiVersion": "client.authentication.k8s.io/v1beta1",
                        "command": AUTH_PLUGIN,
                        "installHint": AUTH_PLUGIN_HINT,
                        "provideClusterInfo": True,
                    }
                },
            }
        ],
    }
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)


def cluster_kubeconfig(cluster: Resource, *, project: str, region: str) -> DeferredValue[str]:
    """Kubeconfig computed from the cluster's name, endpoint and CA once it is Ready."""
    inputs = DeferredValue.all(
        cluster.attr("name"),
        cluster.attr("endpoint"),
        cluster.attr("masterAuth.clusterCaCertificate"),
        label=f"{cluster.key}.kubeconfig",
    )
    return inputs.apply(
        lambda values: render_kubeconfig(
            project=project,
            region=region,
            cluster=values[0],
            endpoint=values[1],
            ca_certificate=values[2],
        )
    )
