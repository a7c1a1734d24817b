"""
Throwaway Containers - Main API Interface

Spin up short-lived service containers (databases, caches, ...) for tests and
scratch environments, and tear them down again.

Module layout:
- request_normalizer.py: request validation and defaults
- container_operations.py: bringing a single container up
- coordinator.py: bringing several containers up concurrently
- teardown.py: release handles and the composite result
- runtime_gateway.py: container runtime interface and Docker implementation
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

from container_operations import PullSink, log_pull_progress, provision_one
from coordinator import provision_all
from models import ProvisionRequest, ProvisionedResource
from request_normalizer import normalize
from runtime_gateway import DockerGateway, RuntimeGateway, get_default_gateway
from settings import Settings, get_settings
from teardown import CompositeResult, ReleaseHandle
from utils import (
    AggregateFailure,
    CreationFailed,
    ImageResolutionFailed,
    InvalidRequest,
    PortUnavailable,
    ProvisioningError,
    ReleaseFailed,
    ResourceConflict,
    RuntimeUnavailable,
    StartFailed,
    get_metrics,
)


@asynccontextmanager
async def provisioned(
    requests: Sequence[ProvisionRequest],
    gateway: Optional[RuntimeGateway] = None,
    *,
    settings: Optional[Settings] = None,
    pull_sink: Optional[PullSink] = None,
) -> AsyncIterator[CompositeResult]:
    """Provision ``requests`` for the duration of an ``async with`` block"""
    result = await provision_all(
        requests, gateway, settings=settings, pull_sink=pull_sink
    )
    async with result:
        yield result


# Public API exports
__all__ = [
    # Provisioning
    "provision_all",
    "provision_one",
    "provisioned",
    "normalize",
    "log_pull_progress",
    # Data model
    "ProvisionRequest",
    "ProvisionedResource",
    "CompositeResult",
    "ReleaseHandle",
    # Runtime
    "RuntimeGateway",
    "DockerGateway",
    "get_default_gateway",
    "Settings",
    "get_settings",
    "get_metrics",
    # Errors
    "ProvisioningError",
    "InvalidRequest",
    "RuntimeUnavailable",
    "ImageResolutionFailed",
    "ResourceConflict",
    "CreationFailed",
    "StartFailed",
    "PortUnavailable",
    "ReleaseFailed",
    "AggregateFailure",
]
