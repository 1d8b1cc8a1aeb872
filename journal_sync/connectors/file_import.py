"""Trade report import: MetaTrader HTML statements and delimited text.

Row-level problems (a cell that will not parse, a trade that breaks the
positivity invariant) skip that row with a log line. Only a document that is
not recognisable as a report at all fails the whole import.
"""

import hashlib
import io
import logging
from datetime import datetime, timedelta, timezone
from pathlib import PurePath

import pandas as pd
from bs4 import BeautifulSoup

from journal_sync.connectors.base import (
    CanonicalTrade,
    ConnectionState,
    PlatformConnector,
    Side,
    in_window,
)
from journal_sync.errors import ImportFormatError, SyncValidationError, TradeValidationError
from journal_sync.utils.constants import IMPORT_EXTENSIONS

logger = logging.getLogger(__name__)

# MetaTrader statement rows: ticket, open time, close time, symbol, type,
# lots, open price, close price, profit, commission, comment
HTML_MIN_CELLS = 8

CSV_MIN_COLUMNS = 5

CSV_SYNONYMS: dict[str, str] = {
    "ticket": "ticket",
    "order": "ticket",
    "id": "ticket",
    "symbol": "symbol",
    "instrument": "symbol",
    "type": "side",
    "side": "side",
    "volume": "quantity",
    "lots": "quantity",
    "size": "quantity",
    "open price": "entry_price",
    "entry price": "entry_price",
    "price": "entry_price",
    "close price": "exit_price",
    "exit price": "exit_price",
    "open time": "entry_time",
    "entry time": "entry_time",
    "close time": "exit_time",
    "exit time": "exit_time",
    "profit": "profit",
    "pnl": "profit",
    "commission": "commission",
    "fee": "commission",
    "comment": "comment",
    "note": "comment",
}


def parse_report(content: str | bytes, filename: str, platform: str | None) -> list[CanonicalTrade]:
    """Dispatch a report to the HTML or CSV parser by file extension."""
    extension = PurePath(filename or "").suffix.lower()
    if extension not in IMPORT_EXTENSIONS:
        allowed = ", ".join(IMPORT_EXTENSIONS)
        raise SyncValidationError(f"Unsupported file type {extension or '(none)'}; upload one of: {allowed}")

    text = _decode(content)
    tag = (platform or "IMPORT").strip().upper() or "IMPORT"
    if extension in (".html", ".htm"):
        return parse_html_report(text, tag)
    return parse_csv_report(text, tag)


def parse_html_report(html: str, platform: str) -> list[CanonicalTrade]:
    soup = BeautifulSoup(html, "html.parser")
    rows = soup.find_all("tr")
    if not rows:
        raise ImportFormatError("Could not parse HTML file. Make sure it is a MetaTrader HTML report.")

    trades = []
    for row in rows:
        cells = [td.get_text(" ", strip=True) for td in row.find_all("td")]
        cells = [c for c in cells if c]
        if len(cells) < HTML_MIN_CELLS:
            continue
        try:
            trades.append(_html_row_to_trade(cells, platform).validate())
        except TradeValidationError as e:
            logger.debug(f"Skipping HTML row: {e}")
        except (ValueError, IndexError) as e:
            logger.warning(f"Error parsing trade row {cells[:1]}: {e}")

    logger.info(f"HTML report: {len(trades)} trades parsed from {len(rows)} rows")
    return trades


def parse_csv_report(text: str, platform: str) -> list[CanonicalTrade]:
    try:
        frame = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            on_bad_lines="skip",
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
        raise ImportFormatError(f"Could not parse CSV file. Check the file format. ({e})")

    headers = [str(column).strip().lower() for column in frame.columns]
    if len(headers) < CSV_MIN_COLUMNS:
        raise ImportFormatError("Invalid CSV format: expected a header row with at least 5 columns")

    columns: dict[str, int] = {}
    for index, header in enumerate(headers):
        field = CSV_SYNONYMS.get(header)
        if field is not None and field not in columns:
            columns[field] = index

    trades = []
    for line_no, row in enumerate(frame.itertuples(index=False, name=None), start=2):
        record = {field: str(row[index]).strip() for field, index in columns.items()}
        try:
            trade = _csv_record_to_trade(record, platform)
        except ValueError as e:
            logger.warning(f"Error parsing CSV row {line_no}: {e}")
            continue
        if trade is not None:
            trades.append(trade)

    logger.info(f"CSV report: {len(trades)} trades parsed from {len(frame)} rows")
    return trades


class FileImportConnector(PlatformConnector):
    """A parsed report exposed through the connector contract."""

    def __init__(self, content: str | bytes, filename: str, platform: str | None = None):
        super().__init__((platform or "IMPORT").upper())
        self.content = content
        self.filename = filename
        self.trades: list[CanonicalTrade] = []

    async def connect(self) -> bool:
        self.trades = parse_report(self.content, self.filename, self.platform)
        self._set_state(ConnectionState.CONNECTED)
        return True

    async def disconnect(self):
        if self.state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
        self._muted = True

    async def request_trade_history(self, from_time: datetime, to_time: datetime) -> list[CanonicalTrade]:
        return in_window(self.trades, from_time, to_time)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _decode(content: str | bytes) -> str:
    if isinstance(content, str):
        return content
    # MetaTrader 4 writes its HTML statements as UTF-16
    if content.startswith((b"\xff\xfe", b"\xfe\xff")):
        return content.decode("utf-16")
    return content.decode("utf-8-sig", errors="replace")


def _number(text: str | None) -> float | None:
    if text is None or text == "":
        return None
    return float(text.replace(" ", "").replace(" ", ""))


def _timestamp(text: str | None) -> datetime | None:
    if not text:
        return None
    # MetaTrader prints dates as 2024.01.02 10:00:00
    value = pd.to_datetime(text.replace(".", "-", 2) if text[:4].isdigit() and text[4:5] == "." else text, utc=True)
    if pd.isna(value):
        return None
    return value.to_pydatetime()


def _side(text: str | None) -> Side:
    lowered = (text or "").lower()
    return Side.LONG if "buy" in lowered or "long" in lowered else Side.SHORT


def _html_row_to_trade(cells: list[str], platform: str) -> CanonicalTrade:
    close_time = _timestamp(cells[2]) or datetime.now(timezone.utc)
    return CanonicalTrade(
        external_id=cells[0],
        symbol=cells[3],
        side=Side.LONG if "buy" in cells[4].lower() else Side.SHORT,
        quantity=_number(cells[5]) or 0.0,
        entry_price=_number(cells[6]) or 0.0,
        exit_price=_number(cells[7]) or 0.0,
        entry_time=_timestamp(cells[1]) or close_time - timedelta(minutes=1),
        exit_time=close_time,
        profit=_number(cells[8]) if len(cells) > 8 else 0.0,
        commission=_number(cells[9]) if len(cells) > 9 else 0.0,
        comment=cells[10] if len(cells) > 10 else None,
        platform=platform,
    )


def _csv_record_to_trade(record: dict[str, str], platform: str) -> CanonicalTrade | None:
    symbol = record.get("symbol", "")
    quantity = _number(record.get("quantity"))
    entry_price = _number(record.get("entry_price"))
    exit_price = _number(record.get("exit_price"))
    if not symbol or not quantity or not entry_price or not exit_price:
        return None
    if quantity <= 0 or entry_price <= 0 or exit_price <= 0:
        return None

    exit_time = _timestamp(record.get("exit_time")) or datetime.now(timezone.utc)
    entry_time = _timestamp(record.get("entry_time")) or exit_time - timedelta(minutes=1)
    side = _side(record.get("side"))
    external_id = record.get("ticket") or _row_digest(symbol, side, quantity, entry_price, exit_price, record)

    return CanonicalTrade(
        external_id=external_id,
        symbol=symbol,
        side=side,
        quantity=quantity,
        entry_price=entry_price,
        exit_price=exit_price,
        entry_time=entry_time,
        exit_time=exit_time,
        profit=_number(record.get("profit")) or 0.0,
        commission=_number(record.get("commission")) or 0.0,
        comment=record.get("comment") or None,
        platform=platform,
    )


def _row_digest(symbol, side, quantity, entry_price, exit_price, record) -> str:
    """Stable id for rows without a ticket, so re-imports stay idempotent."""
    key = "|".join([
        symbol, side.value, repr(quantity), repr(entry_price), repr(exit_price),
        record.get("entry_time", ""), record.get("exit_time", ""),
    ])
    return "row-" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]
