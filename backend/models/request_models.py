"""
Request Models for PodWrt API Endpoints
Pydantic models for API request validation
"""

import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

# Podman container/network names
_NAME_RE = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9_.-]*$')


class ContainerUpdateItem(BaseModel):
    """One container to update, as returned by the check endpoint"""
    name: str = Field(..., min_length=1, max_length=253)
    image: str = Field(..., min_length=1, max_length=512)
    running: bool = False
    current_image_id: Optional[str] = Field(None, max_length=128)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Strip the leading slash Docker-compatible listings add"""
        v = v.lstrip('/')
        if not _NAME_RE.match(v):
            raise ValueError('Invalid container name')
        return v

    @field_validator('image')
    @classmethod
    def validate_image(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Image name is required')
        return v.strip()


class AutoUpdateRunRequest(BaseModel):
    """Request model for running auto-updates"""
    containers: List[ContainerUpdateItem] = Field(..., min_length=1, max_length=100)


class IntegrationRequest(BaseModel):
    """Explicit addressing for an OpenWrt integration; omitted fields come from network inspect"""
    bridge_name: Optional[str] = Field(None, max_length=15)  # IFNAMSIZ - 1
    subnet: Optional[str] = Field(None, max_length=43)
    gateway: Optional[str] = Field(None, max_length=39)
    ipv6subnet: Optional[str] = Field(None, max_length=43)
    ipv6gateway: Optional[str] = Field(None, max_length=39)
    ipv6: bool = False  # derive a ULA /64 when inspect has no IPv6 subnet


class IntegrationValidateRequest(IntegrationRequest):
    """Request model for validating an integration before creating it"""
    network_name: str = Field(..., max_length=253)
