from pydantic_settings import BaseSettings

DEFAULT_ALLOWED_MIME_TYPES = [
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "video/mp4",
    "video/webm",
    "application/pdf",
    "application/json",
    "application/zip",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/csv",
    "text/xml",
]


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str
    host: str
    port: int
    debug: bool
    session_secret_key: str
    admin_password: str  # Password of the "admin" user created on first start
    cors_origins: list[str] = []
    forwarded_allow_ips: str = "127.0.0.1"  # Comma separated proxy addresses trusted for X-Forwarded-* headers

    # Object storage (S3 or any S3-compatible service such as MinIO)
    s3_bucket: str
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None  # e.g. http://localhost:9000 for MinIO
    aws_access_key_id: str | None = None  # Falls back to the default boto3 credential chain
    aws_secret_access_key: str | None = None

    # Attachment uploads
    max_upload_size: int = 500 * 1024 * 1024  # 500 MB
    upload_chunk_size: int = 10 * 1024 * 1024  # 10 MB per multipart chunk
    allowed_mime_types: list[str] = DEFAULT_ALLOWED_MIME_TYPES
    presigned_url_expires: int = 3600  # Seconds

    # Two-phase attachment deletion
    delete_intent_ttl: int = 3600  # Seconds before an unconfirmed delete is reconciled
    reconcile_interval: int = 0  # Seconds between reconciliation sweeps, 0 disables the sweep

    # Sequence id allocation (tc1, DEF-1, ...)
    id_allocation_max_attempts: int = 5
    id_allocation_backoff: float = 0.1  # Seconds, multiplied by the attempt number
    id_allocation_timeout: float = 10.0  # Seconds, upper bound for the whole retry loop

    # Build metadata injected during Docker build via environment variables
    git_commit_hash: str = "unknown"
    git_commit_date: str = "unknown"
    build_time: str = "unknown"

    model_config = {
        "env_file": [".env"],
        "env_prefix": "CASEBOOK_",
        "extra": "ignore",
    }
