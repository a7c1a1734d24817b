from models import ProvisionRequest
from settings import DEFAULT_HOST_IP, DEFAULT_PROTOCOL
from utils import InvalidRequest


def normalize(
    request: ProvisionRequest, default_host_ip: str = DEFAULT_HOST_IP
) -> ProvisionRequest:
    """Validate a request and fill in protocol and host IP defaults.

    A request needs an image and an exposed port; an empty exposed port is
    rejected because the runtime cannot declare an unnamed port. Empty
    protocol becomes tcp and empty host IP becomes ``default_host_ip``.
    Returns a new request; the one passed in is never modified.

    Raises:
        InvalidRequest: if the image or exposed port is missing
    """
    if not request.image or not request.image.strip():
        raise InvalidRequest("image is required")
    if not request.exposed_port:
        raise InvalidRequest(f"exposed_port is required for image '{request.image}'")

    updates = {}
    if not request.protocol:
        updates["protocol"] = DEFAULT_PROTOCOL
    if not request.host_ip:
        updates["host_ip"] = default_host_ip
    return request.model_copy(update=updates)
