"""Tests for saga execution and independent compensation."""

from kungfu import Error, Ok

from trainfood import saga as S
from trainfood.lift import from_result


class Ledger:
    def __init__(self) -> None:
        self.undone: list[str] = []

    def undo(self, label: str):
        async def _undo(value) -> None:
            self.undone.append(f"{label}:{value}")
        return _undo


def ok_step(value, compensate=None):
    return S.step(from_result(Ok(value)), compensate=compensate)


def failing_step(error: str):
    return S.step(from_result(Error(error)))


class TestRun:
    async def test_success_chains_values(self):
        ledger = Ledger()
        saga = (
            S.sequence(ok_step(1, ledger.undo("a")), ok_step(2, ledger.undo("b")))
            .then(lambda values: ok_step(sum(values), ledger.undo("c")))
        )

        result = await S.run(saga)
        match result:
            case Ok(done):
                assert done.value == 3
                assert done.steps_executed == 3
                assert done.compensators_recorded == 3
            case Error(e):
                raise AssertionError(e)
        assert ledger.undone == []

    async def test_failure_rolls_back_in_reverse(self):
        ledger = Ledger()
        saga = (
            S.sequence(ok_step("x", ledger.undo("a")), ok_step("y", ledger.undo("b")))
            .then(lambda _: failing_step("boom"))
        )

        match await S.run(saga):
            case Error(failure):
                assert failure.error == "boom"
                assert failure.step_failed == 3
                assert failure.compensators_run == 2
                assert failure.rollback_complete
            case Ok(v):
                raise AssertionError(v)
        assert ledger.undone == ["b:y", "a:x"]

    async def test_failure_inside_sequence_stops_it(self):
        ledger = Ledger()
        called = []

        def later(_):
            called.append(True)
            return ok_step("never")

        saga = S.sequence(
            ok_step("x", ledger.undo("a")), failing_step("short"), ok_step("z", ledger.undo("c"))
        ).then(later)

        match await S.run(saga):
            case Error(failure):
                assert failure.error == "short"
            case Ok(v):
                raise AssertionError(v)
        assert ledger.undone == ["a:x"]
        assert called == []

    async def test_failing_compensator_does_not_stop_rollback(self):
        ledger = Ledger()

        async def broken(_):
            raise RuntimeError("cannot undo")

        saga = S.sequence(
            ok_step("x", ledger.undo("a")), ok_step("y", broken), failing_step("boom")
        )

        match await S.run(saga):
            case Error(failure):
                assert failure.compensators_run == 1
                assert failure.compensators_failed == 1
                assert not failure.rollback_complete
            case Ok(v):
                raise AssertionError(v)
        assert ledger.undone == ["a:x"]


class TestFromAsync:
    async def test_raising_action_becomes_error(self):
        ledger = Ledger()

        async def reserve():
            return "held"

        async def charge():
            raise ConnectionError("gateway down")

        saga = S.sequence(
            S.from_async(reserve, on_error=str, compensate=ledger.undo("reserve")),
            S.from_async(charge, on_error=lambda e: f"charge: {e}"),
        )

        match await S.run(saga):
            case Error(failure):
                assert failure.error == "charge: gateway down"
                assert failure.step_failed == 2
            case Ok(v):
                raise AssertionError(v)
        assert ledger.undone == ["reserve:held"]


class TestCompensateAll:
    async def test_every_action_runs(self):
        seen = []

        async def good(n):
            seen.append(n)
            return n

        async def bad():
            raise RuntimeError("nope")

        outcomes = await S.compensate_all([
            ("one", lambda: good(1)),
            ("two", bad),
            ("three", lambda: good(3)),
        ])

        assert seen == [1, 3]
        assert [o.name for o in outcomes] == ["one", "two", "three"]
        assert isinstance(outcomes[0].result, Ok)
        assert isinstance(outcomes[1].result, Error)
        assert isinstance(outcomes[2].result, Ok)
