"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All settings are read from environment variables (case-insensitive)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Persistence ───────────────────────────────────────────────────────────
    # Clusters, users and user→cluster assignments live in one JSON document.
    credential_store_path: str = "/data/credentials.json"
    # Append-only JSON-lines file holding one audit record per line.
    audit_store_path: str = "/data/audit.jsonl"

    # Fernet key used to encrypt cluster passwords at rest.  Leave empty to
    # store them in plaintext (local evaluation only).
    # Generate one with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    secret_encryption_key: str = ""

    # ── Upstream RabbitMQ Management API ──────────────────────────────────────
    # Every proxied call carries a bounded connect + read timeout so a slow
    # cluster cannot tie up a request indefinitely.
    upstream_connect_timeout: float = 5.0
    upstream_read_timeout: float = 30.0
    upstream_verify_tls: bool = True
    # Size of the connection pool kept by each cluster's HTTP client.
    upstream_max_connections: int = 20

    # ── Cluster health monitoring ─────────────────────────────────────────────
    # Health results are served from cache this long before a read re-checks.
    health_check_interval_seconds: float = 60.0

    # ── Write-operation audit ─────────────────────────────────────────────────
    audit_write_operations_enabled: bool = True
    # True: audit records are persisted in a background task (fire-and-forget).
    # False: the write is awaited, bounded by audit_persist_timeout.
    audit_async_processing: bool = True
    audit_persist_timeout: float = 2.0

    # ── Sessions / identity ───────────────────────────────────────────────────
    # Secret key for signing the session cookie.  MUST be changed in production.
    session_secret: str = "change-this-session-secret"
    session_cookie: str = "rabbitmq_admin_session"
    session_max_age: int = 8 * 3600
    session_https_only: bool = False

    # When running behind an authenticating reverse proxy, name the header that
    # carries the authenticated user ID (e.g. "X-Auth-User-Id").  Empty means
    # the principal is taken from the session cookie only.
    trusted_user_header: str = ""

    # Take the audited client IP from X-Forwarded-For.  Enable only behind a
    # reverse proxy that overwrites the header; otherwise callers can forge it.
    trust_forwarded_for: bool = False

    # Administrator created on first start when the store has none.
    # Set to "" to disable.
    bootstrap_admin_username: str = "admin"

    log_level: str = "INFO"
