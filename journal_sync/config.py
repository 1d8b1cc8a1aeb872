"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./journal.db"
    encryption_key: str = ""  # Fernet key; generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Terminal bridges (socket push)
    mt4_bridge_url: str = "ws://localhost:8081"
    mt5_bridge_url: str = "ws://localhost:8080"
    ninjatrader_bridge_url: str = "ws://localhost:3012"
    ninjatrader_account: str = "Sim101"

    # REST platforms
    mt5_webterminal_url: str = "http://localhost:8080"
    ctrader_base_url: str = "https://api.ctrader.com"
    binance_base_url: str = "https://api.binance.com/api"
    binance_testnet_url: str = "https://testnet.binance.vision/api"
    binance_recv_window_ms: int = 5000
    binance_symbols: list[str] = [
        "BTCUSDT", "ETHUSDT", "BNBUSDT", "ADAUSDT", "DOTUSDT",
        "XRPUSDT", "LTCUSDT", "LINKUSDT", "BCHUSDT", "XLMUSDT",
        "UNIUSDT", "DOGEUSDT", "SOLUSDT", "MATICUSDT", "AVAXUSDT",
    ]

    # Timeouts (seconds)
    http_timeout_seconds: float = 15.0
    socket_open_timeout_seconds: float = 10.0
    socket_reply_timeout_seconds: float = 30.0

    # Reconnect policy for socket connectors
    reconnect_max_attempts: int = 5
    reconnect_base_delay_seconds: float = 5.0

    # Poll intervals (seconds)
    ctrader_poll_seconds: float = 30.0
    webterminal_poll_seconds: float = 5.0
    binance_poll_seconds: float = 60.0

    # History window for syncs that give no start date
    sync_lookback_days: int = 90

    # Connection-attempt rate limit
    sync_rate_limit_attempts: int = 5
    sync_rate_limit_window_seconds: int = 15 * 60

    # Inbound ingestion
    ingest_token: str = ""  # empty = accept any (or no) bearer token
    registry_online_seconds: int = 60
    registry_ttl_hours: int = 24

    model_config = {"env_prefix": "TS_", "env_file": ".env"}


settings = Settings()
