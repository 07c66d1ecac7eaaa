"""
Pydantic models for the relay HTTP API.

Fields are snake_case in Python and serialized with camelCase aliases,
so handlers should dump with ``by_alias=True`` (see ``ApiModel.to_json``).
"""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class CreateRelayResponse(ApiModel):
    """GET /create-relay response."""

    session_id: str
    relay_url: str
    http_url: str
    client_count: int


class StreamInfoResponse(ApiModel):
    """GET /stream/{session_id} response."""

    session_id: str
    source_url: str
    client_count: int
    is_active: bool
    http_stream_url: str


class SessionStatus(ApiModel):
    """One entry of the GET /status listing."""

    id: str
    source_url: str
    client_count: int
    is_active: bool
    state: str


class StatusResponse(ApiModel):
    """GET /status response."""

    active_sessions: list[SessionStatus]
    total_sessions: int


class HealthResponse(ApiModel):
    """GET /health response."""

    status: str
    timestamp: str
    uptime_seconds: int
    sessions: int


class ErrorResponse(ApiModel):
    error: str
