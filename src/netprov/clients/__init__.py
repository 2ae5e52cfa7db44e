from netprov.clients.base import BaseHTTPClient, is_retryable_status

__all__ = ["BaseHTTPClient", "is_retryable_status"]
