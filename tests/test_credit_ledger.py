import threading

import pytest

from aitools.credits.ledger import INSUFFICIENT_BALANCE_MESSAGE, InMemoryCreditLedger


def test_consume_and_refund():
    ledger = InMemoryCreditLedger({"u": 100})
    result = ledger.consume("u", 60, "Pose Changer", job_id="j1")
    assert result.success and result.new_balance == 40
    assert ledger.refund("u", 60, "Refund: failed", job_id="j1") == 100
    entries = ledger.transactions("u")
    assert [e.delta for e in entries] == [-60, 60]
    assert entries[1].is_refund


def test_insufficient_balance_leaves_balance_untouched():
    ledger = InMemoryCreditLedger({"u": 50})
    result = ledger.consume("u", 60, "Pose Changer")
    assert not result.success
    assert result.error_message == INSUFFICIENT_BALANCE_MESSAGE
    assert ledger.balance("u") == 50
    assert ledger.transactions("u") == []


def test_non_positive_amounts_are_rejected():
    ledger = InMemoryCreditLedger({"u": 50})
    with pytest.raises(ValueError):
        ledger.consume("u", 0, "x")
    with pytest.raises(ValueError):
        ledger.refund("u", -5, "x")


def test_concurrent_consume_never_overdraws():
    ledger = InMemoryCreditLedger({"u": 250})
    results = []
    barrier = threading.Barrier(20)

    def worker():
        barrier.wait()
        results.append(ledger.consume("u", 60, "race"))

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    successes = [r for r in results if r.success]
    assert len(successes) == 250 // 60
    assert ledger.balance("u") == 250 - 60 * len(successes)
    assert ledger.balance("u") >= 0


def test_monthly_reset_restores_plan_credits():
    ledger = InMemoryCreditLedger({"a": 10, "b": 900}, monthly_allowance={"a": 500, "b": 500})
    assert ledger.reset_monthly() == 2
    assert ledger.balance("a") == 500
    assert ledger.balance("b") == 500
    assert ledger.transactions("a")[-1].delta == 490
