"""Phoenix infrastructure - Python lifecycle orchestrator.

Provisions, bootstraps, upgrades, and tears down the self-hosted
Kubernetes cluster on AWS by driving terraform, ansible, kubectl, and vault.
"""

try:
    from importlib.metadata import version

    __version__ = version("phoenix-infra")
except Exception:
    __version__ = "0.0.0.dev0"

__all__ = ["__version__"]
