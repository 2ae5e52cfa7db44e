"""
Stack settings using Pydantic.

Provides environment-based configuration loading with NETPROV_ prefix.
Values from a stack file (netprov.yaml) are passed as init kwargs and take
precedence over the environment.
"""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Stack and engine settings."""

    # GCP
    gcp_project: str = "jstz-dev-dbc1"
    gcp_region: str = "europe-west2"
    gcp_access_token: str | None = None
    gcp_compute_url: str = "https://compute.googleapis.com/compute/v1"
    gcp_container_url: str = "https://container.googleapis.com/v1"
    gcp_dns_url: str = "https://dns.googleapis.com/dns/v1"

    # Cluster
    cluster_name: str = "riscvnet-cluster"
    network: str = "dev-jstz-network"
    subnetwork: str = "dev-jstz-subnet"
    node_count: int = 3
    machine_type: str = "n1-standard-4"

    # Network deployment
    network_name: str = "riscvnet"
    namespace: str = "riscvnet"
    domain: str = "riscvnet.jstz.info"
    dns_zone: str = "jstz-info"
    dns_ttl: int = 300
    chart_repo: str = "https://oxheadalpha.github.io/tezos-helm-charts/"
    chart_version: str = "6.25.0"
    templates_dir: Path = Path("networks/riscvnet")

    # Helm
    helm_binary: str = "helm"

    # Engine tunables
    node_timeout_seconds: float = 1200.0
    poll_interval_seconds: float = 5.0
    max_concurrency: int = 8
    retry_max_attempts: int = 5
    retry_backoff_multiplier: float = 2.0
    retry_backoff_min: float = 1.0
    retry_backoff_max: float = 30.0

    # HTTP client
    http_timeout: float = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "NETPROV_"
