from pydantic import BaseModel, Field


class MonitorSettings(BaseModel):
    """Polling policy applied to every tracked transaction."""

    confirmation_threshold: int = Field(1, ge=1)
    max_retries: int = Field(120, ge=1)  # 10 minutes with 5s intervals
    retry_interval_ms: int = Field(5000, ge=0)
    initial_delay_ms: int = Field(1000, ge=0)
