"""Tests for ModelHealthMonitor: failures, auto-disable, recovery."""
from __future__ import annotations

import threading
from datetime import timedelta

from conftest import fetch_model
from tipster.health import ModelHealthMonitor, should_skip_model_due_to_health
from tipster.records import Model


class TestFailures:

    def test_third_failure_disables(self, seeded):
        mon = ModelHealthMonitor(seeded)
        assert mon.record_model_failure("alpha", "timeout").auto_disabled is False
        assert mon.record_model_failure("alpha", "timeout").auto_disabled is False
        third = mon.record_model_failure("alpha", "timeout")
        assert third.auto_disabled is True
        assert third.consecutive_failures == 3

        row = fetch_model(seeded, "alpha")
        assert row["auto_disabled"] is True
        assert row["auto_disabled_at"] is not None
        assert row["failure_reason"] == "timeout"
        assert mon.get_auto_disabled_model_ids() == ["alpha"]

    def test_only_the_flipping_call_reports_disable(self, seeded):
        mon = ModelHealthMonitor(seeded)
        outcomes = [mon.record_model_failure("alpha", "boom").auto_disabled for _ in range(5)]
        assert outcomes == [False, False, True, False, False]
        assert fetch_model(seeded, "alpha")["consecutive_failures"] == 5

    def test_reason_truncated(self, seeded):
        ModelHealthMonitor(seeded).record_model_failure("alpha", "x" * 2000)
        assert len(fetch_model(seeded, "alpha")["failure_reason"]) == 500

    def test_success_resets(self, seeded):
        mon = ModelHealthMonitor(seeded)
        for _ in range(3):
            mon.record_model_failure("bravo", "bad json")
        assert mon.record_model_success("bravo") is True

        row = fetch_model(seeded, "bravo")
        assert row["consecutive_failures"] == 0
        assert row["auto_disabled"] is False
        assert row["failure_reason"] is None
        assert row["last_success_at"] is not None

    def test_unknown_model(self, seeded):
        mon = ModelHealthMonitor(seeded)
        out = mon.record_model_failure("nobody", "x")
        assert out.auto_disabled is False
        assert mon.record_model_success("nobody") is False
        assert mon.re_enable_model("nobody") is False

    def test_concurrent_failures_all_counted(self, seeded):
        mon = ModelHealthMonitor(seeded)
        flips = []

        def worker():
            for _ in range(3):
                flips.append(mon.record_model_failure("charlie", "overloaded").auto_disabled)

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        row = fetch_model(seeded, "charlie")
        assert row["consecutive_failures"] == 9
        assert row["auto_disabled"] is True
        assert flips.count(True) == 1


class TestReEnable:

    def test_manual_re_enable(self, seeded):
        mon = ModelHealthMonitor(seeded)
        for _ in range(3):
            mon.record_model_failure("alpha", "down")
        assert mon.re_enable_model("alpha") is True
        row = fetch_model(seeded, "alpha")
        assert (row["auto_disabled"], row["consecutive_failures"], row["failure_reason"]) == (False, 0, None)

    def test_should_skip(self):
        assert should_skip_model_due_to_health(Model("m", auto_disabled=True)) is True
        assert should_skip_model_due_to_health(Model("m")) is False

    def test_models_with_health_sorted(self, seeded):
        ids = [m.model_id for m in ModelHealthMonitor(seeded).get_models_with_health()]
        assert ids == ["alpha", "bravo", "charlie"]


class TestRecovery:

    def test_recovers_after_cooldown_on_probation(self, seeded, clock):
        mon = ModelHealthMonitor(seeded)
        for _ in range(3):
            mon.record_model_failure("alpha", "down")

        assert mon.recover_disabled_models(timedelta(minutes=60)) == []
        clock.advance(minutes=61)
        assert mon.recover_disabled_models(timedelta(minutes=60)) == ["alpha"]

        row = fetch_model(seeded, "alpha")
        assert row["auto_disabled"] is False
        assert row["consecutive_failures"] == 2
        # one more failure and it is out again
        assert mon.record_model_failure("alpha", "still down").auto_disabled is True

    def test_default_cooldown_from_settings(self, seeded, clock):
        mon = ModelHealthMonitor(seeded)
        for _ in range(3):
            mon.record_model_failure("bravo", "down")
        clock.advance(minutes=seeded.settings.model_recovery_cooldown_minutes)
        assert mon.recover_disabled_models() == ["bravo"]

    def test_health_change_drops_active_models_cache(self, seeded, counters):
        from tipster.counters import ACTIVE_MODELS_CACHE_KEY

        counters.incr(ACTIVE_MODELS_CACHE_KEY)
        mon = ModelHealthMonitor(seeded)
        for _ in range(3):
            mon.record_model_failure("alpha", "down")
        assert counters.get(ACTIVE_MODELS_CACHE_KEY) is None
