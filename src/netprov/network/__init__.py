"""Deployment programs and their declaration surface."""

from netprov.network.stack import Resource, Stack

__all__ = ["Resource", "Stack"]
