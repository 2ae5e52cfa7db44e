from netprov.providers.base import (
    ApiResult,
    ChartInstaller,
    CloudResourceAPI,
    DNSProvider,
    KubernetesAPI,
)

__all__ = [
    "ApiResult",
    "ChartInstaller",
    "CloudResourceAPI",
    "DNSProvider",
    "KubernetesAPI",
]
