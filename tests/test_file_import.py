"""Tests for HTML statement and CSV report parsing."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from journal_sync.connectors.base import Side
from journal_sync.connectors.file_import import (
    FileImportConnector,
    parse_csv_report,
    parse_html_report,
    parse_report,
)
from journal_sync.errors import ImportFormatError, SyncValidationError

STATEMENT = """
<html><body><table>
<tr><th>Ticket</th><th>Open Time</th><th>Close Time</th><th>Symbol</th><th>Type</th><th>Lots</th>
    <th>Open Price</th><th>Close Price</th><th>Profit</th><th>Commission</th><th>Comment</th></tr>
<tr><td>5001</td><td>2024.01.02 09:00:00</td><td>2024.01.02 10:00:00</td><td>EURUSD</td><td>buy</td>
    <td>0.10</td><td>1.1000</td><td>1.1050</td><td>50.00</td><td>-0.70</td><td>scalp</td></tr>
<tr><td>5002</td><td>2024.01.03 09:00:00</td><td>2024.01.03 11:30:00</td><td>GBPUSD</td><td>sell</td>
    <td>0.20</td><td>1.2700</td><td>1.2650</td><td>100.00</td><td>-1.40</td></tr>
<tr><td>5003</td><td>2024.01.04 09:00:00</td><td>2024.01.04 10:00:00</td><td>USDJPY</td><td>buy</td>
    <td>0.00</td><td>145.00</td><td>145.50</td><td>0.00</td><td>0.00</td></tr>
<tr><td>5004</td><td>2024.01.05 09:00:00</td><td>2024.01.05 10:00:00</td><td>AUDUSD</td><td>buy</td>
    <td>n/a</td><td>0.6700</td><td>0.6750</td><td>0.00</td><td>0.00</td></tr>
<tr><td colspan="8">Closed P/L:</td><td>150.00</td></tr>
</table></body></html>
"""


# ---------------------------------------------------------------------------
# 1. HTML statements
# ---------------------------------------------------------------------------

class TestHtmlReport:
    def test_parses_trade_rows(self, caplog):
        caplog.set_level(logging.WARNING, logger="journal_sync.connectors.file_import")
        trades = parse_html_report(STATEMENT, "MT4")

        assert [t.external_id for t in trades] == ["5001", "5002"]
        first, second = trades
        assert first.side == Side.LONG
        assert first.quantity == 0.1
        assert first.entry_time == datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)
        assert first.exit_time == datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)
        assert first.commission == -0.7
        assert first.comment == "scalp"
        assert second.side == Side.SHORT
        assert second.comment is None
        # Unparseable lots cell
        assert "5004" in caplog.text

    def test_document_without_rows_is_format_error(self):
        with pytest.raises(ImportFormatError):
            parse_html_report("<html><body><p>No trades</p></body></html>", "MT4")

    def test_utf16_statement_bytes(self):
        trades = parse_report(STATEMENT.encode("utf-16"), "Statement.htm", "mt4")
        assert len(trades) == 2
        assert trades[0].platform == "MT4"


# ---------------------------------------------------------------------------
# 2. CSV reports
# ---------------------------------------------------------------------------

class TestCsvReport:
    def test_synonym_headers(self):
        csv = (
            "Order,Instrument,Side,Lots,Entry Price,Exit Price,Close Time,PnL,Fee\n"
            "1001,EURUSD,buy,0.1,1.1000,1.1050,2024-01-01T10:00:00,50,0.5\n"
        )
        [trade] = parse_csv_report(csv, "MT5")

        assert trade.external_id == "1001"
        assert trade.symbol == "EURUSD"
        assert trade.side == Side.LONG
        assert trade.quantity == 0.1
        assert trade.entry_price == 1.1
        assert trade.exit_price == 1.105
        assert trade.profit == 50
        assert trade.commission == 0.5
        assert trade.exit_time == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert trade.entry_time == trade.exit_time - timedelta(minutes=1)

    def test_rows_missing_required_values_are_skipped(self):
        csv = (
            "Ticket,Symbol,Type,Volume,Open Price,Close Price\n"
            "1,EURUSD,sell,0.5,1.10,1.09\n"
            "2,,buy,0.5,1.10,1.09\n"
            "3,EURUSD,buy,0,1.10,1.09\n"
            "4,EURUSD,short,1,1.10,1.09\n"
        )
        trades = parse_csv_report(csv, "IMPORT")
        assert [t.external_id for t in trades] == ["1", "4"]
        assert all(t.side == Side.SHORT for t in trades)

    def test_missing_ticket_gets_stable_row_id(self):
        csv = (
            "Symbol,Side,Size,Entry Price,Exit Price,Exit Time\n"
            "BTCUSDT,long,0.01,42000,43000,2024-02-01 12:00:00\n"
        )
        first = parse_csv_report(csv, "BINANCE")
        second = parse_csv_report(csv, "BINANCE")

        assert first[0].external_id.startswith("row-")
        assert first[0].external_id == second[0].external_id

    def test_too_few_columns_is_format_error(self):
        with pytest.raises(ImportFormatError):
            parse_csv_report("Symbol,Price\nEURUSD,1.1\n", "MT5")

    def test_empty_file_is_format_error(self):
        with pytest.raises(ImportFormatError):
            parse_csv_report("", "MT5")


# ---------------------------------------------------------------------------
# 3. Dispatch
# ---------------------------------------------------------------------------

def test_unsupported_extension_rejected():
    with pytest.raises(SyncValidationError):
        parse_report(b"whatever", "trades.xlsx", "MT5")


@pytest.mark.asyncio
async def test_file_connector_serves_window():
    connector = FileImportConnector(STATEMENT, "report.html", "mt4")
    await connector.connect()

    trades = await connector.request_trade_history(
        datetime(2024, 1, 3, tzinfo=timezone.utc), datetime(2024, 1, 4, tzinfo=timezone.utc)
    )
    assert [t.external_id for t in trades] == ["5002"]
    await connector.disconnect()
    assert not connector.is_connected
