"""Protos API client for provider registration and DNS resources."""

from collections.abc import Iterable

import httpx
import structlog
from pydantic import ValidationError

from .config import ProtosConfig
from .models import Resource, resource_map_adapter

logger = structlog.get_logger()

PROVIDER_TYPE = "dns"

# Protos marks a resource as applied with this status value
STATUS_APPLIED = "created"


class ProtosAPIError(Exception):
    """Error talking to the Protos API."""


class ProviderAlreadyRegistered(ProtosAPIError):
    """Protos already has a provider registered for this resource type."""


class ProtosClient:
    """Client for the Protos internal provider API."""

    def __init__(self, config: ProtosConfig) -> None:
        self.config = config
        self.base_url = config.url.rstrip("/")
        self._client = httpx.Client(
            headers={"Appid": config.app_id},
            timeout=30.0,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "ProtosClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def register_provider(self, kind: str = PROVIDER_TYPE) -> None:
        """Register as provider for a resource type.

        Raises:
            ProviderAlreadyRegistered: If Protos already knows this provider
            ProtosAPIError: On any other failure
        """
        try:
            response = self._client.post(self._url("internal/provider"), json={"type": kind})
        except httpx.HTTPError as e:
            raise ProtosAPIError(f"Failed to register provider: {e}") from e

        if response.status_code == 409 or (
            response.is_error and "already registered" in response.text.lower()
        ):
            raise ProviderAlreadyRegistered(f"Provider for '{kind}' is already registered")
        if response.is_error:
            raise ProtosAPIError(
                f"Failed to register provider: HTTP {response.status_code} {response.text.strip()}"
            )

    def deregister_provider(self, kind: str = PROVIDER_TYPE) -> None:
        """Remove the provider registration for a resource type."""
        try:
            response = self._client.request(
                "DELETE", self._url("internal/provider"), json={"type": kind}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProtosAPIError(f"Failed to deregister provider: {e}") from e

    def get_resources(self) -> dict[str, Resource]:
        """Get all resources assigned to this provider, keyed by resource ID."""
        url = self._url("internal/resource/provider")

        logger.debug("Querying Protos resources", url=url)
        try:
            response = self._client.get(url)
            response.raise_for_status()
            resources = resource_map_adapter.validate_python(response.json() or {})
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            raise ProtosAPIError(f"Failed to fetch resources: {e}") from e

        logger.debug("Found resources", count=len(resources))
        return resources

    def set_resource_status(self, resource_id: str, status: str) -> None:
        """Report the status of a single resource."""
        try:
            response = self._client.post(
                self._url(f"internal/resource/{resource_id}"), json={"status": status}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProtosAPIError(f"Failed to set status for resource {resource_id}: {e}") from e

    def set_status_batch(self, resource_ids: Iterable[str], status: str) -> int:
        """Report the same status for several resources.

        Failures for individual resources are logged and skipped.

        Returns:
            Number of resources whose status was updated
        """
        updated = 0
        for resource_id in resource_ids:
            logger.info("Setting resource status", resource=resource_id, status=status)
            try:
                self.set_resource_status(resource_id, status)
                updated += 1
            except ProtosAPIError as e:
                logger.error("Could not set resource status", resource=resource_id, error=str(e))
        return updated

    def health_check(self, timeout: float = 2.0) -> bool:
        """Check if the Protos API is accessible."""
        try:
            response = self._client.get(self._url("internal/resource/provider"), timeout=timeout)
            response.raise_for_status()
            return True
        except Exception as e:
            logger.error("Protos health check failed", error=str(e))
            return False
