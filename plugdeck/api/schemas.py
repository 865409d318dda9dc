"""
Pydantic schemas for API request/response models.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# Request Schemas

class ConfigSubmission(BaseModel):
    """Settings object submitted from a plugin's settings form."""
    config: Dict[str, Any] = Field(default_factory=dict, description="Values keyed by settings field key")
    apply_defaults: bool = Field(default=False, description="Fill declared defaults for absent fields before validating")


class SanitizeRequest(BaseModel):
    """Raw event payload to preview the way a viewer will see it."""
    payload: Any = Field(..., description="Arbitrary JSON value")
    extra_keys: List[str] = Field(default_factory=list, description="Additional field names to mask")


# Response Schemas

class ConfigValidationResponse(BaseModel):
    valid: bool
    config: Dict[str, Any] = Field(..., description="Submitted settings with secrets masked")


class ConfigDisplayResponse(BaseModel):
    plugin_key: str
    config: Dict[str, Any]


class PluginSummary(BaseModel):
    key: str
    ok: bool
    name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    jobs: int = 0
    error: Optional[Dict[str, Any]] = None


class MenuResponse(BaseModel):
    menus: List[Dict[str, Any]]
    diagnostics: List[Dict[str, Any]]


class SanitizeResponse(BaseModel):
    payload: Any


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    plugins_dir: str
    plugins_discovered: int


class ErrorResponse(BaseModel):
    """Standard error response format."""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None
    timestamp: datetime
