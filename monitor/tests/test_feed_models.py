import json

import pytest

from monitor.feed.models import FeedMessageError, parse_ticker_message


def test_flat_message():
    t = parse_ticker_message(
        {"symbol": "btcusdt", "price": "65000.5", "quoteVolume": "1200000", "timestamp": 1700000000000}
    )
    assert t.symbol == "BTCUSDT"
    assert t.price == 65000.5
    assert t.quote_volume == 1_200_000.0
    assert t.timestamp_ms == 1_700_000_000_000


def test_stream_envelope_as_json_text():
    raw = json.dumps(
        {
            "stream": "ethusdt@ticker",
            "data": {"e": "24hrTicker", "E": 1700000000123, "s": "ETHUSDT", "c": "2001.10", "q": "5000"},
        }
    )
    t = parse_ticker_message(raw)
    assert t.symbol == "ETHUSDT"
    assert t.price == 2001.1
    assert t.timestamp_ms == 1_700_000_000_123


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[1, 2, 3]",
        {"symbol": "BTCUSDT", "price": "1.0"},
        {"symbol": "", "price": "1.0", "quoteVolume": "1"},
        {"symbol": "BTCUSDT", "price": "0", "quoteVolume": "1"},
        {"symbol": "BTCUSDT", "price": "nan", "quoteVolume": "1"},
        {"symbol": "BTCUSDT", "price": "abc", "quoteVolume": "1"},
        {"symbol": "BTCUSDT", "price": "1.0", "quoteVolume": "-5"},
    ],
)
def test_malformed_messages_are_rejected(raw):
    with pytest.raises(FeedMessageError):
        parse_ticker_message(raw)
