"""Tests for DerivedAtom: pull reads, propagation, dynamic dependencies."""

import logging

import pytest

from bansa import DerivedAtom, SourceAtom, atom, derived


def _chain(prev, i, runs):
    def compute(get):
        runs.append(i)
        return get(prev) + 1

    return atom(compute)


class TestDerivedAtom:
    def test_lazy_eval(self):
        call_count = 0
        a = SourceAtom(5)

        def fn(get):
            nonlocal call_count
            call_count += 1
            return get(a) * 2

        d = DerivedAtom(fn)
        assert call_count == 0  # not yet evaluated
        assert d.state.status == "inactive"
        assert d.get() == 10
        assert call_count == 1

    def test_cached_until_collected(self, ticks):
        call_count = 0
        a = SourceAtom(5)

        def fn(get):
            nonlocal call_count
            call_count += 1
            return get(a) * 2

        d = DerivedAtom(fn)
        d.get()
        d.get()
        assert call_count == 1  # alive until the GC tick
        ticks.tick()
        assert not d.active
        assert d.get() == 10
        assert call_count == 2

    def test_read_before_flush(self, ticks):
        x = SourceAtom(0)
        y = atom(lambda get: get(x) + 1)
        assert y.get() == 1
        x.set(10)
        ticks.run_soon()
        assert y.get() == 11

    def test_read_after_collection(self, ticks):
        x = SourceAtom(0)
        y = atom(lambda get: get(x) + 1)
        assert y.get() == 1
        ticks.tick()
        x.set(10)
        ticks.run_soon()
        assert y.get() == 11

    def test_chained(self, ticks):
        o = SourceAtom(3)
        doubled = atom(lambda get: get(o) * 2)
        quadrupled = atom(lambda get: get(doubled) * 2)
        assert quadrupled.get() == 12
        o.set(5)
        ticks.run_soon()
        assert quadrupled.get() == 20

    def test_dynamic_dependencies(self, ticks):
        flag = SourceAtom(True)
        a = SourceAtom(1)
        b = SourceAtom(2)
        runs = []

        def pick(get):
            runs.append(1)
            return get(a) if get(flag) else get(b)

        c = atom(pick)
        received = []
        c.subscribe(received.append)
        ticks.run_soon()
        assert received == [1]
        assert c.dependencies == frozenset({flag, a})

        flag.set(False)
        ticks.run_soon()
        assert received == [1, 2]
        assert c.dependencies == frozenset({flag, b})
        assert c not in a._children

        runs.clear()
        a.set(99)  # no longer read
        ticks.run_soon()
        assert runs == []

    def test_diamond_runs_once(self, ticks):
        counts = {"b": 0, "c": 0, "d": 0}
        a = SourceAtom(1)

        def b_fn(get):
            counts["b"] += 1
            return get(a) + 1

        def c_fn(get):
            counts["c"] += 1
            return get(a) * 2

        def d_fn(get):
            counts["d"] += 1
            return get(b) + get(c)

        b, c, d = atom(b_fn), atom(c_fn), atom(d_fn)
        received = []
        d.subscribe(received.append)
        ticks.run_soon()
        assert received == [4]
        assert counts == {"b": 1, "c": 1, "d": 1}

        a.set(5)
        ticks.run_soon()
        assert received == [4, 16]
        assert counts == {"b": 2, "c": 2, "d": 2}

    def test_deep_chain_runs_each_node_once(self, ticks):
        root = SourceAtom(0)
        runs = []
        node = root
        for i in range(50):
            node = _chain(node, i, runs)

        received = []
        node.subscribe(received.append)
        ticks.run_soon()
        assert received == [50]
        assert sorted(runs) == list(range(50))

        runs.clear()
        root.set(1)
        ticks.run_soon()
        assert received == [50, 51]
        assert sorted(runs) == list(range(50))

    def test_deep_pull_read(self):
        root = SourceAtom(1)
        node = root
        for i in range(100):
            node = _chain(node, i, [])
        assert node.get() == 101

    def test_unchanged_result_stops_propagation(self, ticks):
        a = SourceAtom(2)
        parity = atom(lambda get: get(a) % 2)
        runs = []

        def label(get):
            runs.append(1)
            return "odd" if get(parity) else "even"

        d = atom(label)
        d.subscribe(lambda v: None)
        ticks.run_soon()
        assert runs == [1]

        a.set(4)
        ticks.run_soon()
        assert runs == [1]

    def test_custom_equals(self, ticks):
        a = SourceAtom([1, 2])
        copy = atom(lambda get: list(get(a)), equals=lambda x, y: x == y)
        received = []
        copy.subscribe(received.append)
        ticks.run_soon()

        a.set([1, 2])
        ticks.run_soon()
        assert received == [[1, 2]]

        a.set([3])
        ticks.run_soon()
        assert received == [[1, 2], [3]]

    def test_conditional_reader_sees_fresh_values(self, ticks):
        data = SourceAtom([100])
        has_filter = SourceAtom(False)
        filtered = atom(lambda get: [] if get(has_filter) else get(data))

        def stage_fn(get):
            if not get(has_filter):
                return 0
            return 1 if len(get(filtered)) == 0 else 2

        stage = atom(stage_fn)
        stage.subscribe(lambda v: None)
        filtered.subscribe(lambda v: None)
        ticks.run_soon()
        assert stage.get() == 0

        has_filter.set(True)
        ticks.run_soon()
        assert stage.get() == 1

    def test_error_is_stored_and_raised(self, ticks, caplog):
        def fail(get):
            raise ValueError("boom")

        d = atom(fail)
        with caplog.at_level(logging.ERROR, logger="bansa"):
            with pytest.raises(ValueError, match="boom"):
                d.get()
        assert "Uncaught error in atom" in caplog.text

    def test_error_reported_once_downstream(self, ticks, caplog):
        bad = SourceAtom(True)

        def maybe_fail(get):
            if get(bad):
                raise ValueError("boom")
            return 1

        d = atom(maybe_fail)
        e = atom(lambda get: get(d) + 1)
        with caplog.at_level(logging.ERROR, logger="bansa"):
            e.subscribe(lambda v: None)
            ticks.run_soon()
        assert len(caplog.records) == 1
        assert isinstance(e.state.error, ValueError)
        assert e.state.error is d.state.error
        assert e.state.status == "error"

        bad.set(False)
        ticks.run_soon()
        assert e.get() == 2
        assert e.state.error is None

    def test_dependency_error_not_swallowed_by_except_exception(self, ticks):
        def fail(get):
            raise KeyError("missing")

        d = atom(fail)

        def swallow(get):
            try:
                return get(d)
            except Exception:
                return "swallowed"

        s = atom(swallow)
        with pytest.raises(KeyError):
            s.get()

    def test_derived_decorator(self):
        count = SourceAtom(3)

        @derived
        def doubled(get):
            return get(count) * 2

        @derived(persist=True)
        def tripled(get):
            return get(count) * 3

        assert isinstance(doubled, DerivedAtom)
        assert doubled.get() == 6
        assert tripled.get() == 9
        assert tripled._persist

    def test_repr(self):
        def total(get):
            return 3

        d = atom(total)
        assert repr(d) == "DerivedAtom(total, inactive)"
        d.get()
        assert repr(d) == "DerivedAtom(total, value=3)"

    def test_flush_recovers_after_raising_equals(self, ticks):
        a = SourceAtom(1)

        def picky(new, old):
            if new == "boom":
                raise ValueError("cannot compare")
            return new == old

        d = atom(lambda get: get(a), equals=picky)
        e = atom(lambda get: get(d))
        received = []
        e.subscribe(received.append)
        ticks.run_soon()
        assert received == [1]

        a.set("boom")
        with pytest.raises(ValueError, match="cannot compare"):
            ticks.run_soon()

        a.set(2)
        ticks.run_soon()
        assert received == [1, 2]

    def test_reader_of_new_edge_settles(self, ticks):
        s = SourceAtom(1)
        flag = SourceAtom(False)
        runs = []

        def a_fn(get):
            runs.append("a")
            return get(s) * 10

        def c_fn(get):
            runs.append("c")
            return get(a)

        def b_fn(get):
            runs.append("b")
            return get(a) if get(flag) else 0

        a, c, b = atom(a_fn), atom(c_fn), atom(b_fn)
        received = []
        c.subscribe(lambda v: None)
        b.subscribe(received.append)
        ticks.run_soon()
        assert received == [0]

        runs.clear()
        s.set(2)
        flag.set(True)
        ticks.run_soon()
        assert b.get() == 20
        assert received[-1] == 20
        assert runs.count("a") == 1
        assert runs.count("c") == 1
        assert runs.count("b") == 2
