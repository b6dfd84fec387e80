from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_EDITABLE_FIELDS: list[str] = [
    "Full Name",
    "Phone Number",
    "Country/Region Code",
    "State/Province/Region",
    "City",
    "Address1",
    "Address2",
    "Zip Code",
    "Email",
]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables / .env file."""

    app_name: str = "Gift List Address API"
    app_env: str = Field(default="development", alias="APP_ENV")
    app_port: int = 8000
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # Microsoft Graph (client-credentials flow)
    tenant_id: str | None = Field(default=None, alias="TENANT_ID")
    graph_client_id: str | None = Field(default=None, alias="CLIENT_ID")
    graph_client_secret: str | None = Field(default=None, alias="CLIENT_SECRET")
    graph_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0", alias="GRAPH_BASE_URL",
    )
    graph_login_url: str = Field(
        default="https://login.microsoftonline.com", alias="GRAPH_LOGIN_URL",
    )
    graph_scope: str = Field(
        default="https://graph.microsoft.com/.default", alias="GRAPH_SCOPE",
    )

    # Gift list storage
    share_link: str | None = Field(default=None, alias="SHARE_LINK")
    store_format: str = Field(
        default="workbook", alias="STORE_FORMAT",
    )  # "workbook" | "snapshot"
    local_store_path: str | None = Field(
        default=None, alias="LOCAL_STORE_PATH",
    )  # Reads/writes a local file instead of the share link

    # Tokens and submissions
    token_base_url: str = Field(
        default="https://gift-list-tool.vercel.app/", alias="TOKEN_BASE_URL",
    )
    token_ttl_days: int = Field(default=7, alias="TOKEN_TTL_DAYS")
    max_submissions: int = Field(default=3, alias="MAX_SUBMISSIONS")
    editable_fields: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EDITABLE_FIELDS),
        alias="EDITABLE_FIELDS",
    )

    # Upstream behaviour
    upstream_timeout: float = Field(default=30.0, alias="UPSTREAM_TIMEOUT")
    upstream_max_retries: int = Field(default=3, alias="UPSTREAM_MAX_RETRIES")
    upstream_retry_backoff: float = Field(
        default=0.5, alias="UPSTREAM_RETRY_BACKOFF",
    )  # Seconds; doubled on every attempt
    commit_max_attempts: int = Field(default=3, alias="COMMIT_MAX_ATTEMPTS")

    # Request audit trail
    database_url: str = Field(
        default="sqlite+aiosqlite:///./gift_list_audit.db",
        alias="DATABASE_URL",
    )
    audit_enabled: bool = Field(default=True, alias="AUDIT_ENABLED")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
    }

    @property
    def token_ttl_ms(self) -> int:
        return self.token_ttl_days * 24 * 60 * 60 * 1000


settings = Settings()
