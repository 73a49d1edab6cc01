from pydantic import BaseModel, HttpUrl, model_validator


class ServerSettings(BaseModel):
    log_level: str = "info"

    # Telemetry
    otel_enabled: bool = False
    otel_service_name: str = "sbtc-monitor"
    otel_exporter_otlp_endpoint: HttpUrl = "http://jaeger:4317"

    @model_validator(mode="after")
    def validate_otel_config(self) -> "ServerSettings":
        """Validate OpenTelemetry configuration."""
        if not self.otel_service_name.strip():
            raise ValueError("SBTC_MONITOR_SERVER__OTEL_SERVICE_NAME cannot be empty")
        return self
