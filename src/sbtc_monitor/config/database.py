from pydantic import BaseModel


class DatabaseSettings(BaseModel):
    url: str = "sqlite:///./sbtc_monitor.db"
    echo: bool = False
