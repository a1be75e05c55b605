"""Error taxonomy for proxied cluster calls and the persistent stores.

Authorization and pool-resolution errors are raised before any upstream call
is attempted.  Upstream errors carry enough detail (status, body) for the HTTP
layer to render guidance, but each upstream status is mapped explicitly rather
than relayed blindly.
"""

from __future__ import annotations

from enum import StrEnum


class DenyReason(StrEnum):
    NOT_ASSIGNED = "NotAssigned"
    CLUSTER_INACTIVE = "ClusterInactive"


class ProxyError(Exception):
    """Base class for errors raised while dispatching to a cluster."""

    kind = "ProxyError"


class AccessDenied(ProxyError):
    """The principal may not operate on the cluster.  Never reaches upstream."""

    kind = "AccessDenied"

    def __init__(self, reason: DenyReason, cluster_id: str) -> None:
        super().__init__(f"Access denied to cluster '{cluster_id}': {reason}")
        self.reason = reason
        self.cluster_id = cluster_id


class ClusterUnavailable(ProxyError):
    """Connection record missing or inactive, or the client could not be built."""

    kind = "ClusterUnavailable"

    def __init__(self, cluster_id: str, message: str = "") -> None:
        super().__init__(message or f"Cluster connection '{cluster_id}' is not available")
        self.cluster_id = cluster_id


class UpstreamUnreachable(ProxyError):
    """Network failure or timeout talking to a live cluster."""

    kind = "UpstreamUnreachable"

    def __init__(self, cluster_id: str, message: str, timed_out: bool = False) -> None:
        super().__init__(message)
        self.cluster_id = cluster_id
        self.timed_out = timed_out


class UpstreamAuthRejected(ProxyError):
    """The cluster rejected the stored credentials (HTTP 401/403)."""

    kind = "UpstreamAuthRejected"

    def __init__(self, cluster_id: str, status_code: int) -> None:
        if status_code == 401:
            message = "RabbitMQ API authentication failed - invalid cluster credentials"
        else:
            message = "RabbitMQ API access forbidden - insufficient cluster permissions"
        super().__init__(message)
        self.cluster_id = cluster_id
        self.status_code = status_code


class ResourceNotFound(ProxyError):
    kind = "ResourceNotFound"

    def __init__(self, resource_name: str) -> None:
        super().__init__(f"Resource not found: {resource_name}")
        self.resource_name = resource_name


class UpstreamRequestError(ProxyError):
    """Upstream answered with a 4xx other than 401/403/404."""

    kind = "UpstreamRequestError"

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"RabbitMQ API rejected the request with HTTP {status_code}: {body[:200]}")
        self.status_code = status_code
        self.body = body


class UpstreamServerError(ProxyError):
    kind = "UpstreamServerError"

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"RabbitMQ API server error HTTP {status_code}: {body[:200]}")
        self.status_code = status_code
        self.body = body


class UpstreamInvalidResponse(ProxyError):
    """A successful upstream answer whose body is not JSON, e.g. a login page."""

    kind = "UpstreamInvalidResponse"

    def __init__(self, cluster_id: str, content_type: str | None, body: str) -> None:
        super().__init__(
            f"RabbitMQ API returned a non-JSON response ({content_type or 'no content type'}): {body[:200]}"
        )
        self.cluster_id = cluster_id
        self.content_type = content_type
        self.body = body


class AuditPersistenceFailure(Exception):
    """Raised by the audit store.  Always recovered inside the audit recorder."""


# ── Store errors ──────────────────────────────────────────────────────────────


class StoreError(Exception):
    """Raised when the credential store rejects an operation."""


class NotFoundError(StoreError):
    pass


class DuplicateError(StoreError):
    pass
