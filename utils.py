import logging
import structlog
from typing import Optional, Dict, Any
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
)
from settings import get_settings

# Configure structured logging; handlers are left to the host application
LOGGER_NAME = "throwaway_containers"
logging.getLogger(LOGGER_NAME).setLevel(get_settings().log_level)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(LOGGER_NAME)

# Prometheus metrics
ACTIVE_CONTAINERS = Gauge(
    "throwaway_active_containers", "Number of provisioned containers not yet released"
)
CONTAINER_OPERATIONS = Counter(
    "throwaway_container_operations_total",
    "Container operations",
    ["operation", "status"],
)
PROVISION_LATENCY = Histogram(
    "throwaway_provision_duration_seconds",
    "Time taken to bring a single container up",
)


def log_container_operation(
    operation: str,
    container_id: Optional[str],
    status: str,
    details: Dict[str, Any] = None,
):
    """Log container operations with structured logging"""
    logger.info(
        "Container operation",
        operation=operation,
        container_id=container_id,
        status=status,
        details=details or {},
    )
    CONTAINER_OPERATIONS.labels(operation=operation, status=status).inc()


def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()


# Error handling utilities
class ProvisioningError(Exception):
    """Base exception for container provisioning"""

    def __init__(self, message: str, error_code: str = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class InvalidRequest(ProvisioningError):
    """The request failed normalization; nothing was sent to the runtime"""

    def __init__(self, message: str):
        super().__init__(message, "INVALID_REQUEST")


class RuntimeUnavailable(ProvisioningError):
    """The container runtime could not be reached"""

    def __init__(self, message: str = "Container runtime is not available"):
        super().__init__(message, "RUNTIME_UNAVAILABLE")


class ImageResolutionFailed(ProvisioningError):
    def __init__(self, message: str):
        super().__init__(message, "IMAGE_RESOLUTION_FAILED")


class ResourceConflict(ProvisioningError):
    def __init__(self, message: str):
        super().__init__(message, "RESOURCE_CONFLICT")


class CreationFailed(ProvisioningError):
    def __init__(self, message: str):
        super().__init__(message, "CREATION_FAILED")


class StartFailed(ProvisioningError):
    def __init__(self, message: str):
        super().__init__(message, "START_FAILED")


class PortUnavailable(ProvisioningError):
    """The container is running but exposes no host binding for its port"""

    def __init__(self, message: str):
        super().__init__(message, "PORT_UNAVAILABLE")


class ReleaseFailed(ProvisioningError):
    """A container could not be removed and may still be running"""

    def __init__(self, message: str, container_id: str = None):
        self.container_id = container_id
        super().__init__(message, "RELEASE_FAILED")


class AggregateFailure(ProvisioningError):
    """One member of a fan-out failed; every other member has been released"""

    def __init__(self, index: int, cause: BaseException):
        self.index = index
        self.cause = cause
        super().__init__(
            f"Provisioning request {index} failed: {cause}", "AGGREGATE_FAILURE"
        )
