"""Build the right connector for a platform name or a stored broker."""

from journal_sync.connectors.base import PlatformConnector
from journal_sync.connectors.binance import BinanceConnector
from journal_sync.connectors.ctrader import CTraderConnector
from journal_sync.connectors.metatrader import MT4Connector, MT5Connector
from journal_sync.connectors.mt5_webterminal import MT5WebTerminalConnector
from journal_sync.connectors.ninjatrader import NinjaTraderConnector
from journal_sync.errors import SyncValidationError
from journal_sync.models.broker import Broker
from journal_sync.services.encryption import decrypt_secret
from journal_sync.utils.constants import (
    PLATFORM_BINANCE,
    PLATFORM_CTRADER,
    PLATFORM_MT4,
    PLATFORM_MT5,
    PLATFORM_MT5_WEB,
    PLATFORM_NINJATRADER,
)


def create_connector(
    platform: str,
    login: str = "",
    password: str = "",
    server: str = "",
    api_url: str | None = None,
    api_key: str | None = None,
    api_secret: str | None = None,
) -> PlatformConnector:
    tag = platform.strip().upper()
    if tag == PLATFORM_MT4:
        return MT4Connector(api_url, expected_account=login or None)
    if tag == PLATFORM_MT5:
        return MT5Connector(api_url, expected_account=login or None)
    if tag == PLATFORM_MT5_WEB:
        return MT5WebTerminalConnector(api_url, login=login, password=password, server=server)
    if tag == PLATFORM_CTRADER:
        # The cTrader Open API authenticates with an OAuth access token
        return CTraderConnector(api_secret or password, base_url=api_url)
    if tag == PLATFORM_NINJATRADER:
        return NinjaTraderConnector(api_url, account=login or None)
    if tag == PLATFORM_BINANCE:
        testnet = "testnet" in (server or "").lower()
        return BinanceConnector(api_key or "", api_secret or "", testnet=testnet)
    raise SyncValidationError(f"Unsupported platform: {platform}")


def connector_for_broker(broker: Broker) -> PlatformConnector:
    return create_connector(
        broker.platform,
        login=broker.account_id,
        password=decrypt_secret(broker.password_encrypted),
        server=broker.server or "",
        api_url=broker.api_url,
        api_key=broker.api_key,
        api_secret=decrypt_secret(broker.api_secret_encrypted),
    )
