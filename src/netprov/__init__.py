"""netprov: dependency-aware provisioning of the riscvnet network deployment."""

__version__ = "0.1.0"
