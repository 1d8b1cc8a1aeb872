"""Shared constants and defaults."""

DEMO_USER_ID = "demo"

# Platform tags carried on CanonicalTrade.platform and embedded in trade notes
PLATFORM_MT4 = "MT4"
PLATFORM_MT5 = "MT5"
PLATFORM_MT5_WEB = "MT5WEB"
PLATFORM_CTRADER = "CTRADER"
PLATFORM_NINJATRADER = "NINJATRADER"
PLATFORM_BINANCE = "BINANCE"

# Platforms accepted by the outbound sync endpoint
SYNC_PLATFORMS = ["mt4", "mt5", "mt5web", "ctrader", "ninjatrader"]

# Platform names accepted on stored brokers
BROKER_PLATFORMS = ["MT4", "MT5", "MT5WEB", "cTrader", "NinjaTrader", "Binance"]

BROKER_STATUSES = ["disconnected", "connecting", "connected", "error"]

IMPORT_EXTENSIONS = [".html", ".htm", ".csv"]

MAX_RECONNECT_MESSAGE = "max reconnection attempts reached"
