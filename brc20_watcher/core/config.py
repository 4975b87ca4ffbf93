"""Environment-driven settings shared by the watcher and its status surface."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_MIN_INTERVAL_S = 0.1


class Settings(BaseSettings):
    """Simple application settings loaded from environment variables or a local .env file."""

    APP_NAME: str = "BRC20 Watcher"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    VERSION: str = "0.1.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    API_ENABLED: bool = False
    BITCOIN_RPC_URL: str = ""
    BITCOIN_RPC_USER: str = ""
    BITCOIN_RPC_PASSWORD: str = ""
    FEE_API_URL: str = "https://mempool.space/api/v1/fees/recommended"
    HTTP_TIMEOUT_S: float = 10.0
    WATCH_BLOCK_INTERVAL_S: float = 10.0
    WATCH_BLOCK_STATS_INTERVAL_S: float = 10.0
    WATCH_FEE_INTERVAL_S: float = 5.0
    BROADCAST_CAPACITY: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def rpc_url(self) -> str:
        """Return the node endpoint without surrounding whitespace."""

        return self.BITCOIN_RPC_URL.strip()

    def rpc_auth(self) -> tuple[str, str] | None:
        """Return basic-auth credentials when a user is configured."""

        user = self.BITCOIN_RPC_USER.strip()
        if not user:
            return None
        return user, self.BITCOIN_RPC_PASSWORD

    def block_interval(self) -> float:
        """Return the chain state poll interval in seconds."""

        return self._clamp_interval(self.WATCH_BLOCK_INTERVAL_S)

    def block_stats_interval(self) -> float:
        """Return the block stats poll interval in seconds."""

        return self._clamp_interval(self.WATCH_BLOCK_STATS_INTERVAL_S)

    def fee_interval(self) -> float:
        """Return the fee estimate poll interval in seconds."""

        return self._clamp_interval(self.WATCH_FEE_INTERVAL_S)

    def broadcast_capacity(self) -> int:
        return max(1, self.BROADCAST_CAPACITY)

    @staticmethod
    def _clamp_interval(value: float) -> float:
        return max(_MIN_INTERVAL_S, value)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""

    return Settings()
