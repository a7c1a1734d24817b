from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, List


class ProvisionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    image: str = ""  # e.g., "redis:latest"
    exposed_port: str = ""  # e.g., "6379"
    name: Optional[str] = None
    binding_port: str = ""  # "" lets the runtime pick a host port
    protocol: str = ""  # "" becomes tcp
    host_ip: str = ""  # "" becomes the configured default host IP
    environment: List[str] = Field(default_factory=list)  # e.g., ["USER=root"]
    override_existing: bool = False

    @field_validator("exposed_port", "binding_port", mode="before")
    @classmethod
    def _port_as_string(cls, value):
        if value is None:
            return ""
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def port_key(self) -> str:
        return f"{self.exposed_port}/{self.protocol}"


class ProvisionedResource(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_id: str
    name: Optional[str] = None
    host_address: str
    host_port: str

    @property
    def connection_uri(self) -> str:
        return f"{self.host_address}:{self.host_port}"


# Records returned by the runtime gateway


class ImageSummary(BaseModel):
    tags: List[str] = Field(default_factory=list)


class ResourceSummary(BaseModel):
    id: str
    names: List[str] = Field(default_factory=list)


class PortBinding(BaseModel):
    host_ip: str = ""
    host_port: str = ""


class ResourceInspection(BaseModel):
    bindings: Dict[str, List[PortBinding]] = Field(default_factory=dict)  # "6379/tcp" -> bindings
