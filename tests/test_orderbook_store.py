from predictive_bot.models import DepthUpdate, OrderBook, SequenceGap
from predictive_bot.orderbook_store import OrderBookStore


def _store(**kw) -> OrderBookStore:
    return OrderBookStore(clock=lambda: 1234, **kw)


def _snap(bids, asks, last: int) -> OrderBook:
    return OrderBook(bids=tuple(bids), asks=tuple(asks), last_update_id=last)


def test_diff_removes_zero_quantity_level():
    store = _store()
    store.apply_snapshot("BTCUSDT", _snap([(100.0, 5.0)], [(101.0, 5.0)], 10))

    book = store.apply_diff("BTCUSDT", DepthUpdate(11, 11, bids=((100.0, 0.0),)))

    assert book.bids == ()
    assert book.asks == ((101.0, 5.0),)
    assert book.last_update_id == 11
    assert book.timestamp_ms == 1234


def test_stale_diff_returns_book_unchanged():
    store = _store()
    before = store.apply_snapshot("BTCUSDT", _snap([(100.0, 5.0)], [(101.0, 5.0)], 10))

    res = store.apply_diff("BTCUSDT", DepthUpdate(9, 10, bids=((100.0, 99.0),)))

    assert res is before
    assert store.get("BTCUSDT") == before


def test_gap_returns_sequence_gap_and_keeps_book():
    store = _store()
    before = store.apply_snapshot("BTCUSDT", _snap([(100.0, 5.0)], [(101.0, 5.0)], 100))

    res = store.apply_diff("BTCUSDT", DepthUpdate(250, 260, bids=((100.0, 1.0),)))

    assert isinstance(res, SequenceGap)
    assert res.book_update_id == 100
    assert res.event_first_id == 250
    assert store.get("BTCUSDT") is before
    assert store.needs_resync("BTCUSDT")


def test_gap_within_threshold_is_bridged():
    store = _store()
    store.apply_snapshot("BTCUSDT", _snap([(100.0, 5.0)], [(101.0, 5.0)], 100))

    res = store.apply_diff("BTCUSDT", DepthUpdate(200, 205, asks=((101.5, 2.0),)))

    assert isinstance(res, OrderBook)
    assert res.asks == ((101.0, 5.0), (101.5, 2.0))


def test_levels_stay_sorted_unique_and_bounded():
    store = _store(max_levels=3)
    store.apply_snapshot("BTCUSDT", _snap([(100.0, 1.0)], [(101.0, 1.0)], 1))

    uid = 2
    for bids, asks in [
        (((99.0, 1.0), (100.0, 2.0)), ((102.0, 1.0),)),
        (((99.5, 3.0), (98.0, 1.0)), ((101.0, 4.0), (100.5, 1.0))),
        (((97.0, 1.0), (99.0, 0.0)), ((103.0, 1.0), (102.0, 0.0))),
    ]:
        store.apply_diff("BTCUSDT", DepthUpdate(uid, uid, bids=bids, asks=asks))
        uid += 1

    book = store.get("BTCUSDT")
    bid_prices = [p for p, _ in book.bids]
    ask_prices = [p for p, _ in book.asks]
    assert bid_prices == sorted(set(bid_prices), reverse=True)
    assert ask_prices == sorted(set(ask_prices))
    assert len(book.bids) <= 3 and len(book.asks) <= 3
    assert book.bids[0] == (100.0, 2.0)
    assert book.asks[0] == (100.5, 1.0)


def test_levels_outside_price_band_are_pruned():
    store = _store(price_band=0.10)
    book = store.apply_snapshot("BTCUSDT", _snap([(100.0, 1.0), (80.0, 50.0)], [(101.0, 1.0), (130.0, 9.0)], 1))

    assert book.bids == ((100.0, 1.0),)
    assert book.asks == ((101.0, 1.0),)


def test_cold_start_synthesizes_book_from_event():
    store = _store()
    book = store.apply_diff("ETHUSDT", DepthUpdate(5, 7, bids=((10.0, 1.0), (10.1, 0.0)), asks=((10.2, 2.0),)))

    assert book.bids == ((10.0, 1.0),)
    assert book.asks == ((10.2, 2.0),)
    assert book.last_update_id == 7


def test_previous_book_is_the_value_before_last_diff():
    store = _store()
    first = store.apply_snapshot("BTCUSDT", _snap([(100.0, 5.0)], [(101.0, 5.0)], 10))
    assert store.previous("BTCUSDT") is None

    second = store.apply_diff("BTCUSDT", DepthUpdate(11, 11, bids=((100.0, 7.0),)))

    assert store.previous("BTCUSDT") is first
    assert first.bids == ((100.0, 5.0),)
    assert second.bids == ((100.0, 7.0),)


def test_diffs_buffered_until_snapshot_then_replayed_in_order():
    store = _store()
    store.begin_sync("BTCUSDT")

    assert store.apply_diff("BTCUSDT", DepthUpdate(13, 14, bids=((99.0, 2.0),))) is None
    assert store.apply_diff("BTCUSDT", DepthUpdate(8, 9, bids=((100.0, 0.0),))) is None
    assert store.apply_diff("BTCUSDT", DepthUpdate(11, 12, asks=((101.0, 3.0),))) is None
    assert store.is_buffering("BTCUSDT")
    assert store.get("BTCUSDT") is None

    book = store.apply_snapshot("BTCUSDT", _snap([(100.0, 5.0)], [(101.0, 5.0)], 10))

    assert not store.is_buffering("BTCUSDT")
    assert book.last_update_id == 14
    # the stale event (u=9) must not have removed the 100 bid
    assert book.bids == ((100.0, 5.0), (99.0, 2.0))
    assert book.asks == ((101.0, 3.0),)


def test_snapshot_clears_resync_flag():
    store = _store()
    store.apply_snapshot("BTCUSDT", _snap([(100.0, 5.0)], [(101.0, 5.0)], 100))
    store.apply_diff("BTCUSDT", DepthUpdate(500, 501))
    assert store.needs_resync("BTCUSDT")

    store.apply_snapshot("BTCUSDT", _snap([(100.0, 1.0)], [(101.0, 1.0)], 600))

    assert not store.needs_resync("BTCUSDT")
    assert store.get("BTCUSDT").last_update_id == 600


def test_gap_inside_buffered_replay_leaves_resync_pending():
    store = _store()
    store.begin_sync("BTCUSDT")
    store.apply_diff("BTCUSDT", DepthUpdate(101, 102, bids=((100.0, 7.0),)))
    store.apply_diff("BTCUSDT", DepthUpdate(300, 310, bids=((100.0, 1.0),)))

    book = store.apply_snapshot("BTCUSDT", _snap([(100.0, 5.0)], [(101.0, 5.0)], 100))

    assert book.last_update_id == 102
    assert book.bids == ((100.0, 7.0),)
    assert store.needs_resync("BTCUSDT")
    assert not store.is_buffering("BTCUSDT")
