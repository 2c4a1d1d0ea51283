"""Hosting deployers."""

from repodeploy.deployers.base import DeployContext, HostingDeployer
from repodeploy.deployers.cloudflare import CloudflarePagesDeployer
from repodeploy.deployers.firebase import FirebaseHostingDeployer
from repodeploy.deployers.registry import (
    DeployerRegistry,
    default_registry,
    get_deployer_registry,
)

__all__ = [
    "DeployContext",
    "HostingDeployer",
    "FirebaseHostingDeployer",
    "CloudflarePagesDeployer",
    "DeployerRegistry",
    "default_registry",
    "get_deployer_registry",
]
