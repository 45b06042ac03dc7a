"""Tests for CLI helpers."""

from datetime import datetime

from pitwall.cli import resolve_thread_choice
from pitwall.runtime import ThreadSummary


def summaries() -> list[ThreadSummary]:
    return [
        ThreadSummary("thread_b", datetime(2026, 3, 2), 4, "Add a README"),
        ThreadSummary("thread_a", datetime(2026, 3, 1), 2, "Fix the login bug"),
    ]


def test_resolve_by_id_position_and_latest():
    threads = summaries()

    assert resolve_thread_choice("thread_a", threads) == "thread_a"
    assert resolve_thread_choice(" 2 ", threads) == "thread_a"
    assert resolve_thread_choice("1", threads) == "thread_b"
    assert resolve_thread_choice("latest", threads) == "thread_b"
    assert resolve_thread_choice("LAST", threads) == "thread_b"


def test_resolve_unknown_choice():
    threads = summaries()

    assert resolve_thread_choice("3", threads) is None
    assert resolve_thread_choice("0", threads) is None
    assert resolve_thread_choice("thread_z", threads) is None
    assert resolve_thread_choice("", threads) is None
    assert resolve_thread_choice("latest", []) is None
