"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.

WHAT IS HAPPENING HERE:
Every timing and switch that shapes the gateway lifecycle (reconnect ceiling,
reconnect delay, compression) is declared once here and read from the
environment or a `.env` file. `GatewayOptions` is the per-client view of the
same knobs, so a bot can be built from settings or configured by hand.
"""
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    KOOK_TOKEN: str = ""
    API_BASE_URL: str = "https://www.kookapp.cn/api/v3"
    LOG_LEVEL: str = "INFO"

    # Gateway
    COMPRESS: bool = False
    AUTO_RECONNECT: bool = True
    RECONNECT_INTERVAL_MS: int = 5000
    MAX_RECONNECT_ATTEMPTS: int = 10
    RESOLVE_TIMEOUT_S: float = 10.0

    # Mock gateway (development server)
    MOCK_PORT: int = 8765
    MOCK_HEARTBEAT_INTERVAL_MS: int = 30000

    # Tolerate missing env vars to allow easy out-of-the-box execution
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class GatewayOptions(BaseModel):
    token: str
    compress: bool = False
    auto_reconnect: bool = True
    reconnect_interval_ms: int = Field(default=5000, ge=0)
    max_reconnect_attempts: int = Field(default=10, ge=0)

    @classmethod
    def from_settings(cls, config: "Settings") -> "GatewayOptions":
        return cls(
            token=config.KOOK_TOKEN,
            compress=config.COMPRESS,
            auto_reconnect=config.AUTO_RECONNECT,
            reconnect_interval_ms=config.RECONNECT_INTERVAL_MS,
            max_reconnect_attempts=config.MAX_RECONNECT_ATTEMPTS,
        )


settings = Settings()
