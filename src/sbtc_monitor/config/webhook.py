from pydantic import BaseModel, HttpUrl, SecretStr

DEFAULT_USER_AGENT = "sBTC-TransactionMonitor/1.0"


class WebhookSettings(BaseModel):
    """Outbound notification target for terminal transaction events."""

    url: HttpUrl | None = None
    secret: SecretStr | None = None  # HMAC-SHA256 signing key
    timeout_seconds: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT
