"""Deployer registry for managing hosting providers."""

from functools import lru_cache

import httpx

from repodeploy.deployers.base import HostingDeployer
from repodeploy.deployers.cloudflare import CloudflarePagesDeployer
from repodeploy.deployers.firebase import FirebaseHostingDeployer
from repodeploy.utils.logging import get_logger

logger = get_logger(__name__)


class DeployerRegistry:
    """Registry for hosting deployers, keyed by provider kind."""

    def __init__(self):
        self._deployers: dict[str, type[HostingDeployer]] = {}

    def register(self, deployer_class: type[HostingDeployer]) -> None:
        """Register a deployer class."""
        # Create temporary instance to get provider
        provider = deployer_class().provider

        if provider in self._deployers:
            logger.warning("registry.overwriting_deployer", provider=provider)

        self._deployers[provider] = deployer_class
        logger.debug("registry.deployer_registered", provider=provider)

    def get(self, provider: str) -> type[HostingDeployer] | None:
        """Get a deployer class by provider."""
        return self._deployers.get(provider)

    def create(
        self, provider: str, transport: httpx.AsyncBaseTransport | None = None
    ) -> HostingDeployer | None:
        """Create a deployer instance by provider."""
        deployer_class = self.get(provider)
        if deployer_class:
            return deployer_class(transport=transport)
        return None

    def list_providers(self) -> list[str]:
        """List all registered provider kinds."""
        return list(self._deployers.keys())


def default_registry() -> DeployerRegistry:
    registry = DeployerRegistry()
    registry.register(FirebaseHostingDeployer)
    registry.register(CloudflarePagesDeployer)
    return registry


# Singleton instance
_registry: DeployerRegistry | None = None


@lru_cache
def get_deployer_registry() -> DeployerRegistry:
    """Get the deployer registry singleton."""
    global _registry
    if _registry is None:
        _registry = default_registry()
    return _registry
