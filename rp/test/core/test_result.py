"""Tests for rp.core.result module."""

import pytest

from rp.core.result import Err, Ok, Result, is_err, is_ok


class TestOk:
    def test_value_and_predicates(self) -> None:
        result = Ok(42)
        assert result.value == 42
        assert result.is_ok() is True
        assert result.is_err() is False

    def test_unwrap(self) -> None:
        assert Ok("v").unwrap() == "v"
        assert Ok(1).unwrap_or(0) == 1

    def test_map(self) -> None:
        assert Ok(21).map(lambda x: x * 2) == Ok(42)

    def test_map_err_is_identity(self) -> None:
        result = Ok(1)
        assert result.map_err(lambda e: f"wrapped: {e}") is result


class TestErr:
    def test_error_and_predicates(self) -> None:
        result = Err("boom")
        assert result.error == "boom"
        assert result.is_ok() is False
        assert result.is_err() is True

    def test_unwrap_raises(self) -> None:
        with pytest.raises(ValueError, match="called unwrap on Err"):
            Err("boom").unwrap()

    def test_unwrap_or_returns_default(self) -> None:
        assert Err("boom").unwrap_or(7) == 7

    def test_map_err(self) -> None:
        assert Err(2).map_err(lambda e: e + 1) == Err(3)

    def test_repr(self) -> None:
        assert repr(Err("x")) == "Err('x')"
        assert repr(Ok(1)) == "Ok(1)"


def test_type_guards() -> None:
    good: Result[int, str] = Ok(1)
    bad: Result[int, str] = Err("no")
    assert is_ok(good) and not is_err(good)
    assert is_err(bad) and not is_ok(bad)


def test_pattern_matching() -> None:
    def describe(result: Result[int, str]) -> str:
        match result:
            case Ok(value):
                return f"ok {value}"
            case Err(error):
                return f"err {error}"

    assert describe(Ok(3)) == "ok 3"
    assert describe(Err("x")) == "err x"
