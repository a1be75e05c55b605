"""Pydantic domain, request and response models for the RabbitMQ admin proxy."""

from __future__ import annotations

import json
import re
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

API_URL_RE = re.compile(r"^https?://[\w\-._~:/?#\[\]@!$&'()*+,;=%]+$")


def _check_api_url(value: str) -> str:
    value = value.strip()
    if not API_URL_RE.match(value):
        raise ValueError("API URL must be a valid HTTP or HTTPS URL")
    return value


# ── Identity ──────────────────────────────────────────────────────────────────


class UserRole(StrEnum):
    ADMINISTRATOR = "ADMINISTRATOR"
    USER = "USER"


class User(BaseModel):
    """A stored user record (identity only; passwords are handled elsewhere)."""

    id: str
    username: str
    role: UserRole = UserRole.USER
    created_at: datetime


class Principal(BaseModel):
    """The authenticated actor of one request.

    ``assigned_cluster_ids`` is a snapshot taken when the principal was
    resolved; the access authorizer re-reads the store anyway.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    role: UserRole
    assigned_cluster_ids: frozenset[str] = frozenset()

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMINISTRATOR


# ── Cluster connections ───────────────────────────────────────────────────────


class ClusterConnection(BaseModel):
    """A stored upstream target.  ``password`` is the decrypted secret."""

    id: str
    name: str
    api_url: str
    username: str
    password: str
    description: str = ""
    active: bool = True
    created_at: datetime

    def fingerprint(self) -> tuple[str, str, str]:
        """Endpoint + credential; a pooled client is valid only for one fingerprint."""
        return (self.api_url, self.username, self.password)


class ClusterConnectionResponse(BaseModel):
    id: str
    name: str
    api_url: str
    username: str
    description: str
    active: bool
    created_at: datetime

    @classmethod
    def from_cluster(cls, cluster: ClusterConnection) -> ClusterConnectionResponse:
        return cls(**cluster.model_dump(exclude={"password"}))


class CreateClusterConnectionRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    api_url: str = Field(..., max_length=500)
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=500)
    description: str = Field("", max_length=500)
    active: bool = True
    user_ids: list[str] = Field(default_factory=list, description="Users to assign on creation")

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, value: str) -> str:
        return _check_api_url(value)


class UpdateClusterConnectionRequest(BaseModel):
    """Partial update; omitted or blank connection fields keep their value."""

    name: str | None = Field(None, min_length=1, max_length=100)
    api_url: str | None = Field(None, max_length=500)
    username: str | None = Field(None, max_length=100)
    password: str | None = Field(None, max_length=500)
    description: str | None = Field(None, max_length=500)
    active: bool | None = None
    user_ids: list[str] | None = None

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return value
        return _check_api_url(value)


class ConnectionTestRequest(BaseModel):
    api_url: str
    username: str
    password: str

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, value: str) -> str:
        return _check_api_url(value)


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    details: str | None = None
    response_time_ms: int | None = None


class AssignUsersRequest(BaseModel):
    user_ids: list[str] = Field(default_factory=list)


class CreateUserRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    role: UserRole = UserRole.USER


class UserResponse(BaseModel):
    id: str
    username: str
    role: UserRole
    created_at: datetime
    assigned_cluster_ids: list[str] = Field(default_factory=list)


# ── Proxy ─────────────────────────────────────────────────────────────────────


class ProxyOperation(BaseModel):
    """One logical call against the management API of a cluster."""

    model_config = ConfigDict(frozen=True)

    method: Literal["GET", "PUT", "POST", "DELETE"] = "GET"
    # Path relative to the management base URL, segments already encoded,
    # e.g. "/api/queues/%2F/orders".
    path: str
    query: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    # Reported in ResourceNotFound when the upstream answers 404.
    resource_name: str | None = None


class UpstreamResponse(BaseModel):
    """Successful upstream answer, relayed without reinterpretation."""

    status_code: int
    content: bytes = b""
    content_type: str | None = None

    def json_body(self) -> Any:
        if not self.content:
            return None
        return json.loads(self.content)


class PagedResponse(BaseModel):
    """One page of a list fetched in full from the management API.

    RabbitMQ only paginates some endpoints server-side, so paging is applied
    here after the full list has been fetched.
    """

    items: list[Any]
    page: int
    page_size: int
    total_items: int
    total_pages: int

    @classmethod
    def from_items(cls, items: list[Any], page: int, page_size: int) -> PagedResponse:
        start = (page - 1) * page_size
        return cls(
            items=items[start : start + page_size],
            page=page,
            page_size=page_size,
            total_items=len(items),
            total_pages=(len(items) + page_size - 1) // page_size,
        )


# ── RabbitMQ resources ────────────────────────────────────────────────────────


class CreateExchangeRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    vhost: str = "/"
    type: Literal["direct", "fanout", "topic", "headers", "x-delayed-message", "x-consistent-hash"] = "direct"
    durable: bool = True
    auto_delete: bool = False
    internal: bool = False
    arguments: dict[str, Any] = Field(default_factory=dict)


class CreateQueueRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    vhost: str = "/"
    durable: bool = True
    auto_delete: bool = False
    exclusive: bool = False
    arguments: dict[str, Any] = Field(default_factory=dict)
    node: str | None = None


class BindingDestination(StrEnum):
    """Path segment naming the kind of binding destination."""

    QUEUE = "q"
    EXCHANGE = "e"


class CreateBindingRequest(BaseModel):
    routing_key: str = ""
    arguments: dict[str, Any] = Field(default_factory=dict)


class PublishMessageRequest(BaseModel):
    routing_key: str = ""
    payload: str = ""
    payload_encoding: Literal["string", "base64"] = "string"
    properties: dict[str, Any] = Field(default_factory=dict)


class PublishResponse(BaseModel):
    routed: bool


class GetMessagesRequest(BaseModel):
    count: int = Field(1, ge=1, le=1000)
    ackmode: Literal["ack_requeue_true", "ack_requeue_false", "reject_requeue_true", "reject_requeue_false"] = (
        "ack_requeue_true"
    )
    encoding: Literal["auto", "base64"] = "auto"
    truncate: int | None = Field(None, ge=1)


class CreateShovelRequest(BaseModel):
    """Moves messages from one queue to another through a dynamic shovel."""

    name: str = Field(..., min_length=1, max_length=255, pattern=r"^[a-zA-Z0-9._-]+$")
    vhost: str = Field(..., min_length=1)
    source_queue: str = Field(..., min_length=1)
    destination_queue: str = Field(..., min_length=1)
    source_uri: str = "amqp://localhost"
    destination_uri: str = "amqp://localhost"
    delete_after: Literal["queue-length", "never"] = "queue-length"
    ack_mode: Literal["on-confirm", "on-publish", "no-ack"] = "on-confirm"


# ── Audit ─────────────────────────────────────────────────────────────────────


class AuditOperationType(StrEnum):
    CREATE_EXCHANGE = "CREATE_EXCHANGE"
    DELETE_EXCHANGE = "DELETE_EXCHANGE"
    CREATE_QUEUE = "CREATE_QUEUE"
    DELETE_QUEUE = "DELETE_QUEUE"
    PURGE_QUEUE = "PURGE_QUEUE"
    CREATE_BINDING_EXCHANGE = "CREATE_BINDING_EXCHANGE"
    CREATE_BINDING_QUEUE = "CREATE_BINDING_QUEUE"
    DELETE_BINDING = "DELETE_BINDING"
    PUBLISH_MESSAGE_EXCHANGE = "PUBLISH_MESSAGE_EXCHANGE"
    PUBLISH_MESSAGE_QUEUE = "PUBLISH_MESSAGE_QUEUE"
    MOVE_MESSAGES_QUEUE = "MOVE_MESSAGES_QUEUE"


class AuditOperationStatus(StrEnum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    PARTIAL = "PARTIAL"


class AuditRecord(BaseModel):
    """An immutable fact about one attempted write operation."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    username: str
    cluster_id: str
    cluster_name: str
    operation_type: AuditOperationType
    resource_type: str
    resource_name: str
    resource_details: str | None = None
    status: AuditOperationStatus
    error_message: str | None = None
    timestamp: datetime
    client_ip: str | None = None
    user_agent: str | None = None
    created_at: datetime


class AuditFilter(BaseModel):
    username: str | None = None
    cluster_name: str | None = None
    resource_name: str | None = None
    # Comma-separated list, e.g. "queue,exchange".
    resource_type: str | None = None
    operation_type: AuditOperationType | None = None
    status: AuditOperationStatus | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class AuditPage(BaseModel):
    items: list[AuditRecord]
    page: int
    size: int
    total: int


class AuditConfigurationResponse(BaseModel):
    enabled: bool
    async_processing: bool
    persist_timeout: float


# ── Health ────────────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "rabbitmq-admin"
    pooled_clients: int = 0


class ClusterHealthStatus(BaseModel):
    cluster_id: str
    cluster_name: str | None = None
    healthy: bool
    message: str
    last_checked: datetime
    response_time_ms: int | None = None


class ClusterHealthSummary(BaseModel):
    """UP when every active cluster answers, DOWN when none does."""

    status: Literal["UP", "DEGRADED", "DOWN", "UNKNOWN"]
    total_clusters: int = 0
    healthy_clusters: int = 0
    unhealthy_clusters: int = 0
    clusters: list[ClusterHealthStatus] = Field(default_factory=list)
    checked_at: datetime | None = None
