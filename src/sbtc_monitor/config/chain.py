from pydantic import BaseModel, HttpUrl, model_validator

TESTNET_API_URL = "https://api.testnet.hiro.so"
MAINNET_API_URL = "https://api.hiro.so"


class ChainSettings(BaseModel):
    """Stacks API endpoint used to observe transactions."""

    network: str = "testnet"  # "testnet" or "mainnet"
    api_url: HttpUrl | None = None  # defaults to the Hiro API for the network
    request_timeout_seconds: float = 10.0

    @model_validator(mode="after")
    def validate_network(self) -> "ChainSettings":
        """Reject unknown networks and API hosts that belong to the other network."""
        if self.network not in ("testnet", "mainnet"):
            raise ValueError("SBTC_MONITOR_CHAIN__NETWORK must be 'testnet' or 'mainnet'")

        if self.api_url is not None:
            host = self.api_url.host or ""
            if self.network == "mainnet" and "testnet" in host:
                raise ValueError("Mainnet network configured with a testnet API host")
            if self.network == "testnet" and host == "api.hiro.so":
                raise ValueError("Testnet network configured with the mainnet API host")
        return self

    @property
    def base_url(self) -> str:
        if self.api_url is None:
            return MAINNET_API_URL if self.network == "mainnet" else TESTNET_API_URL
        return str(self.api_url).rstrip("/")
