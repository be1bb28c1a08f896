"""Tests for the bounded live buffer."""

from __future__ import annotations

import pytest

from fakes import rec, ts
from metrics_reconciler.engine.buffer import LiveBuffer


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        LiveBuffer(0)


def test_evicts_oldest_arrival():
    buf = LiveBuffer(2)
    buf.add(rec(1, ts(1, 9)))
    buf.add(rec(2, ts(1, 8)))
    buf.add(rec(3, ts(1, 1)))
    assert [r.id for r in buf.values()] == [2, 3]
    assert 1 not in buf
    assert buf.evictions == 1
    assert len(buf) == 2


def test_reobserved_identity_counts_as_fresh_arrival():
    buf = LiveBuffer(2)
    buf.add(rec(1, ts(1, 1)))
    buf.add(rec(2, ts(1, 2)))
    buf.add(rec(1, ts(1, 1), energy=5.0))
    buf.add(rec(3, ts(1, 3)))
    assert [r.id for r in buf.values()] == [1, 3]
    assert buf.get(1).payload == {"energy": 5.0}


def test_sentinel_records_are_rejected():
    buf = LiveBuffer()
    assert buf.add(rec(0, ts(1))) is False
    assert len(buf) == 0
    assert buf.capacity == 100


def test_clear_keeps_eviction_count():
    buf = LiveBuffer(1)
    buf.add(rec(1, ts(1)))
    buf.add(rec(2, ts(1)))
    buf.clear()
    assert len(buf) == 0
    assert buf.evictions == 1
    buf.add(rec(3, ts(1)))
    assert [r.id for r in buf.values()] == [3]
