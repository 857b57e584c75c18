"""
Tests for the live price feeds.

Sockets, HTTP sessions and timers are replaced with fakes so every state
transition is driven synchronously.

Tests cover:
- Binance message parsing, throttling and malformed-message handling
- Binance single-socket guarantee, reconnect after close, cancel
- Pyth chunk reassembly, symbol filtering, timestamp conversion
- Pyth HTTP errors, bounded retries and retry-count reset
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from src.feeds import BinanceTradeFeed, PricePoint, PythStreamFeed
from src.feeds.binance import normalize_symbol


class FakeTimer:
    """Records scheduled callbacks instead of running them."""

    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fn()


class FakeWebSocketApp:
    """Stand-in for websocket.WebSocketApp that never touches the network."""

    def __init__(self, url, on_open=None, on_message=None, on_error=None, on_close=None):
        self.url = url
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close
        self.closed = False

    def run_forever(self):
        pass

    def close(self):
        self.closed = True

    # Server-side events
    def open(self):
        self.on_open(self)

    def send_trade(self, price, trade_time):
        self.on_message(self, json.dumps({"e": "trade", "p": str(price), "T": trade_time}))

    def send_raw(self, message):
        self.on_message(self, message)

    def fail(self, error):
        self.on_error(self, error)

    def drop(self):
        self.on_close(self, 1006, "abnormal")


class FakeClock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return []


@pytest.fixture
def timer_factory(timers):
    def factory(delay, fn):
        timer = FakeTimer(delay, fn)
        timers.append(timer)
        return timer

    return factory


@pytest.fixture
def sockets():
    return []


@pytest.fixture
def binance(clock, timer_factory, sockets):
    def ws_factory(url, **callbacks):
        ws = FakeWebSocketApp(url, **callbacks)
        sockets.append(ws)
        return ws

    return BinanceTradeFeed(
        "BTC/USDT",
        throttle_ms=250,
        reconnect_delay=2.0,
        ws_factory=ws_factory,
        clock=clock,
        timer_factory=timer_factory,
    )


class TestBinanceParsing:
    """Tests for Binance message handling."""

    def test_symbol_normalization(self):
        assert normalize_symbol("BTC/USDT") == "btcusdt"
        assert normalize_symbol("eth-usdt") == "ethusdt"

    def test_url(self, binance):
        assert binance.url == "wss://stream.binance.com:9443/ws/btcusdt@trade"

    def test_trade_message(self, binance, sockets):
        received = []
        binance.subscribe(received.append)
        binance.connect(blocking=True)
        sockets[0].open()

        sockets[0].send_trade("97000.50", 1_700_000_000_000)

        expected = PricePoint(price=97000.5, time=1_700_000_000_000)
        assert binance.price_data == expected
        assert received == [expected]
        assert binance.is_connected
        assert binance.error is None

    def test_throttle_keeps_first_in_window(self, binance, sockets, clock):
        binance.connect(blocking=True)
        ws = sockets[0]

        ws.send_trade(100, 1)
        clock.now += 100
        ws.send_trade(101, 2)

        assert binance.price_data.price == 100
        assert binance.stats.updates_throttled == 1

        clock.now += 150
        ws.send_trade(102, 3)
        assert binance.price_data.price == 102

    @pytest.mark.parametrize(
        "message",
        ["not json", "[]", '{"p": "1.0"}', '{"p": "abc", "T": 1}', '{"p": null, "T": 1}'],
    )
    def test_malformed_message_dropped(self, binance, sockets, message):
        binance.connect(blocking=True)
        sockets[0].open()

        sockets[0].send_raw(message)

        assert binance.price_data is None
        assert binance.error is None
        assert binance.is_connected
        assert binance.stats.parse_errors == 1

    @pytest.mark.parametrize(
        "message",
        ['{"p": "1.0", "T": 1e400}', '{"p": "1e400", "T": 1}', '{"p": "nan", "T": 1}'],
    )
    def test_non_finite_values_dropped(self, binance, sockets, message):
        binance.connect(blocking=True)
        sockets[0].open()

        sockets[0].send_raw(message)
        sockets[0].send_trade(2.0, 5)

        assert binance.price_data == PricePoint(price=2.0, time=5)
        assert binance.is_connected
        assert binance.error is None
        assert binance.stats.parse_errors == 1

    def test_malformed_message_does_not_consume_throttle(self, binance, sockets):
        binance.connect(blocking=True)

        sockets[0].send_raw("garbage")
        sockets[0].send_trade(100, 1)

        assert binance.price_data.price == 100

    def test_failing_subscriber_isolated(self, binance, sockets):
        good = MagicMock()
        binance.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        binance.subscribe(good)
        binance.connect(blocking=True)

        sockets[0].send_trade(100, 1)

        good.assert_called_once()


class TestBinanceConnection:
    """Tests for the Binance socket lifecycle."""

    def test_connect_is_noop_while_open(self, binance, sockets):
        binance.connect(blocking=True)
        sockets[0].open()
        binance.connect(blocking=True)

        assert len(sockets) == 1

    def test_connect_is_noop_while_opening(self, binance, sockets):
        binance.connect(blocking=True)
        binance.connect(blocking=True)

        assert len(sockets) == 1
        assert not binance.is_connected

    def test_error_reports_state(self, binance, sockets):
        binance.connect(blocking=True)
        sockets[0].open()

        sockets[0].fail("connection reset")

        assert not binance.is_connected
        assert "WebSocket error" in binance.error
        assert binance.stats.connection_errors == 1

    def test_reconnect_after_close(self, binance, sockets, timers):
        binance.connect(blocking=True)
        sockets[0].open()

        sockets[0].drop()

        assert not binance.is_connected
        assert len(timers) == 1
        assert timers[0].delay == 2.0
        assert timers[0].started
        assert timers[0].daemon
        assert len(sockets) == 1

        timers[0].fire()

        assert len(sockets) == 2
        assert not binance.is_connected
        sockets[1].open()
        assert binance.is_connected
        assert binance.stats.reconnects == 1

    def test_error_then_close_reconnects_once(self, binance, sockets, timers):
        binance.connect(blocking=True)
        sockets[0].open()

        sockets[0].fail("boom")
        sockets[0].drop()

        assert len(timers) == 1

    def test_stale_socket_ignored(self, binance, sockets, timers):
        binance.connect(blocking=True)
        sockets[0].drop()
        timers[0].fire()
        sockets[1].open()

        sockets[0].send_trade(1, 1)
        sockets[0].fail("late error")

        assert binance.price_data is None
        assert binance.is_connected
        assert binance.error is None

    def test_cancel_closes_without_reconnect(self, binance, sockets, timers):
        binance.connect(blocking=True)
        sockets[0].open()

        binance.cancel()
        sockets[0].drop()

        assert sockets[0].closed
        assert timers == []
        assert not binance.is_connected
        assert not binance.is_running

    def test_cancel_drops_pending_reconnect(self, binance, sockets, timers):
        binance.connect(blocking=True)
        sockets[0].drop()

        binance.cancel()
        timers[0].fire()

        assert timers[0].cancelled
        assert len(sockets) == 1

    def test_stats(self, binance, sockets):
        binance.connect(blocking=True)
        sockets[0].open()
        sockets[0].send_trade(100, 1)

        stats = binance.get_stats()

        assert stats["feed"] == "binance"
        assert stats["symbol"] == "btcusdt"
        assert stats["connected"] is True
        assert stats["updates_received"] == 1
        assert stats["price"] == 100


def btc_line(price, t):
    return json.dumps({"id": "Crypto.BTC/USD", "p": price, "t": t}) + "\n"


def make_response(chunks, ok=True, status_code=200):
    """Create a streaming response mock yielding ``chunks``."""
    response = MagicMock()
    response.ok = ok
    response.status_code = status_code
    response.iter_content.side_effect = lambda chunk_size: iter(chunks)
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def pyth(session, clock, timer_factory):
    return PythStreamFeed(
        "Crypto.BTC/USD",
        throttle_ms=0,
        max_retries=3,
        retry_delay=3.0,
        session=session,
        clock=clock,
        timer_factory=timer_factory,
    )


class TestPythStream:
    """Tests for Pyth stream parsing."""

    def test_parses_records(self, pyth, session):
        session.get.return_value = make_response([btc_line(97000.5, 1_700_000_000).encode()])

        pyth.connect(blocking=True)

        assert pyth.price_data == PricePoint(price=97000.5, time=1_700_000_000_000)
        assert pyth.error is None

    def test_request(self, pyth, session):
        session.get.return_value = make_response([])

        pyth.connect(blocking=True)

        args, kwargs = session.get.call_args
        assert args[0] == "https://benchmarks.pyth.network/v1/shims/tradingview/streaming"
        assert kwargs["stream"] is True

    def test_record_split_across_chunks(self, pyth, session):
        data = btc_line(123.5, 1_700_000_001).encode()
        session.get.return_value = make_response([data[:20], data[20:33], data[33:]])

        pyth.connect(blocking=True)

        assert pyth.price_data == PricePoint(price=123.5, time=1_700_000_001_000)

    def test_multiple_records_per_chunk(self, pyth, session, clock):
        received = []
        pyth.subscribe(received.append)
        chunk = (btc_line(1.0, 1) + btc_line(2.0, 2)).encode()
        session.get.return_value = make_response([chunk])

        pyth.connect(blocking=True)

        assert [p.price for p in received] == [1.0, 2.0]

    def test_other_symbols_ignored(self, pyth, session):
        other = json.dumps({"id": "Crypto.ETH/USD", "p": 3000, "t": 1}) + "\n"
        session.get.return_value = make_response([other.encode()])

        pyth.connect(blocking=True)

        assert pyth.price_data is None
        assert pyth.stats.parse_errors == 0

    def test_fractional_seconds(self, pyth, session):
        session.get.return_value = make_response([btc_line(1.0, 1_700_000_000.25).encode()])

        pyth.connect(blocking=True)

        assert pyth.price_data.time == 1_700_000_000_250

    def test_malformed_lines_dropped(self, pyth, session):
        chunks = [b"garbage\n", b'{"id": "Crypto.BTC/USD", "p": "x", "t": 1}\n', b"\n"]
        session.get.return_value = make_response(chunks + [btc_line(5.0, 1).encode()])

        pyth.connect(blocking=True)

        assert pyth.stats.parse_errors == 2
        assert pyth.price_data.price == 5.0
        assert pyth.error is None

    @pytest.mark.parametrize(
        "bad_line",
        [
            b'{"id": "Crypto.BTC/USD", "p": 1.0, "t": 1e400}\n',
            b'{"id": "Crypto.BTC/USD", "p": 1e400, "t": 1}\n',
            b'{"id": "Crypto.BTC/USD", "p": NaN, "t": 1}\n',
        ],
    )
    def test_non_finite_values_dropped(self, pyth, session, timers, bad_line):
        session.get.return_value = make_response([bad_line + btc_line(2.0, 5).encode()])

        pyth.connect(blocking=True)

        assert pyth.price_data == PricePoint(price=2.0, time=5000)
        assert pyth.error is None
        assert pyth.stats.parse_errors == 1
        assert pyth.stats.connection_errors == 0
        # Only the normal end-of-stream retry
        assert pyth.retry_count == 1
        assert len(timers) == 1

    def test_trailing_partial_line_ignored(self, pyth, session):
        partial = btc_line(9.0, 1).rstrip("\n").encode()
        session.get.return_value = make_response([partial])

        pyth.connect(blocking=True)

        assert pyth.price_data is None


class TestPythRetries:
    """Tests for the Pyth connection lifecycle."""

    def test_stream_end_schedules_retry(self, pyth, session, timers):
        session.get.return_value = make_response([btc_line(1.0, 1).encode()])

        pyth.connect(blocking=True)

        assert not pyth.is_connected
        assert len(timers) == 1
        assert timers[0].delay == 3.0
        assert pyth.retry_count == 1

    def test_http_error(self, pyth, session, timers):
        session.get.return_value = make_response([], ok=False, status_code=503)

        pyth.connect(blocking=True)

        assert pyth.error == "HTTP 503"
        assert not pyth.is_connected
        assert pyth.stats.connection_errors == 1
        assert len(timers) == 1

    def test_retries_exhausted(self, pyth, session, timers):
        session.get.side_effect = requests.ConnectionError("boom")

        pyth.connect(blocking=True)
        assert pyth.error == "boom"

        for _ in range(3):
            timers[-1].fire()

        assert session.get.call_count == 4
        assert len(timers) == 3
        assert pyth.error == "Failed after 3 retries"
        assert pyth.state.exhausted
        assert not pyth.is_running

    def test_successful_connect_resets_retry_count(self, pyth, session, timers):
        session.get.side_effect = [
            requests.ConnectionError("boom"),
            requests.ConnectionError("boom"),
            make_response([btc_line(1.0, 1).encode()]),
        ]

        pyth.connect(blocking=True)
        timers[-1].fire()
        assert pyth.retry_count == 2

        timers[-1].fire()

        # Reset on connect, then one retry scheduled for the ended stream
        assert pyth.retry_count == 1
        assert pyth.error is None
        assert pyth.price_data.price == 1.0

    def test_connect_aborts_previous_response(self, pyth, session):
        old = MagicMock()
        pyth._response = old
        session.get.return_value = make_response([])

        pyth.connect(blocking=True)

        old.close.assert_called_once()

    def test_cancel_mid_stream(self, pyth, session, timers):
        def chunks():
            yield btc_line(1.0, 1).encode()
            pyth.cancel()
            yield btc_line(2.0, 2).encode()

        response = MagicMock()
        response.ok = True
        response.iter_content.side_effect = lambda chunk_size: chunks()
        session.get.return_value = response

        pyth.connect(blocking=True)

        assert pyth.price_data.price == 1.0
        assert timers == []
        assert not pyth.is_connected
        response.close.assert_called_once()

    def test_cancel_drops_pending_retry(self, pyth, session, timers):
        session.get.side_effect = requests.ConnectionError("boom")
        pyth.connect(blocking=True)

        pyth.cancel()
        timers[0].fire()

        assert timers[0].cancelled
        assert session.get.call_count == 1
