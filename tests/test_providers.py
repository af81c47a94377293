"""
Tests for the budget-gated API-Football client, retry helper and analysis.

HTTP is served by httpx.MockTransport; no network access.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest

from tipster.analysis import build_match_analysis
from tipster.budget import BudgetGuard
from tipster.errors import BudgetExceededError, ExternalSourceError, RateLimitError
from tipster.providers.api_football import ApiFootballClient
from tipster.providers.ratelimit import retry_request

ODDS = {"errors": [], "response": [{"bookmakers": [{"name": "Bet365", "bets": [
    {"name": "Match Winner", "values": [
        {"value": "Home", "odd": "1.90"}, {"value": "Draw", "odd": "3.50"}, {"value": "Away", "odd": "4.20"},
    ]},
]}]}]}
INJURIES = {"errors": [], "response": [
    {"player": {"name": "B. Keeper", "reason": "Hamstring"}, "team": {"name": "Home FC"}},
]}
H2H = {"errors": [], "response": [
    {"teams": {"home": {"id": 1}, "away": {"id": 2}}, "goals": {"home": 1, "away": 0}},
]}


def make_client(handler, budget):
    return ApiFootballClient(
        base="https://api.test", key="k", budget=budget,
        transport=httpx.MockTransport(handler),
    )


def route(responses):
    """MockTransport handler dispatching on URL path."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        resp = responses[request.url.path]
        return resp() if callable(resp) else httpx.Response(200, json=resp)

    handler.seen = seen
    return handler


@pytest.fixture()
def budget(counters, clock):
    return BudgetGuard(counters, limit=100, clock=clock)


class TestRetryRequest:

    def test_retries_transient_then_succeeds(self):
        fn = MagicMock(side_effect=[httpx.ConnectError("dns"), httpx.ReadTimeout("slow"), "ok"])
        sleeps = []
        assert retry_request(fn, max_retries=3, sleep=sleeps.append) == "ok"
        assert fn.call_count == 3
        assert sleeps == [1.0, 3.0]

    def test_gives_up(self):
        fn = MagicMock(side_effect=httpx.ConnectError("dns"))
        with pytest.raises(httpx.ConnectError):
            retry_request(fn, max_retries=2, sleep=lambda s: None)
        assert fn.call_count == 2

    def test_non_transient_not_retried(self):
        fn = MagicMock(side_effect=ValueError("bad"))
        with pytest.raises(ValueError):
            retry_request(fn, sleep=lambda s: None)
        assert fn.call_count == 1


class TestApiFootballClient:

    def test_get_counts_against_budget(self, budget):
        client = make_client(route({"/odds": ODDS}), budget)
        assert client.odds(10)["response"]
        assert budget.get_budget_status().used == 1

    def test_sends_key_header(self, budget):
        captured = {}

        def handler(request):
            captured["key"] = request.headers.get("x-apisports-key")
            captured["params"] = dict(request.url.params)
            return httpx.Response(200, json=H2H)

        make_client(handler, budget).head_to_head(1, 2, last=5)
        assert captured == {"key": "k", "params": {"h2h": "1-2", "last": "5"}}

    def test_429_raises_rate_limit(self, budget):
        client = make_client(lambda r: httpx.Response(429, headers={"Retry-After": "30"}), budget)
        with pytest.raises(RateLimitError) as exc:
            client.odds(10)
        assert exc.value.retry_after == 30.0
        assert exc.value.status_code == 429

    def test_http_error(self, budget):
        client = make_client(lambda r: httpx.Response(503), budget)
        with pytest.raises(ExternalSourceError) as exc:
            client.injuries(10)
        assert exc.value.status_code == 503

    def test_body_errors(self, budget):
        client = make_client(lambda r: httpx.Response(200, json={"errors": {"token": "invalid"}}), budget)
        with pytest.raises(ExternalSourceError):
            client.odds(10)

    @pytest.mark.parametrize("body", [[1, 2], "ok", 3])
    def test_non_object_body(self, budget, body):
        client = make_client(lambda r: httpx.Response(200, json=body), budget)
        with pytest.raises(ExternalSourceError, match="unexpected body"):
            client.odds(10)

    def test_budget_exhausted_blocks_request(self, counters, clock):
        calls = []
        guard = BudgetGuard(counters, limit=1, clock=clock)
        client = make_client(lambda r: calls.append(r) or httpx.Response(200, json=ODDS), guard)
        client.odds(1)
        with pytest.raises(BudgetExceededError):
            client.odds(2)
        assert len(calls) == 1


class TestMatchAnalysis:

    def test_all_sections(self, budget):
        client = make_client(route({"/odds": ODDS, "/injuries": INJURIES, "/fixtures/headtohead": H2H}), budget)
        a = build_match_analysis(client, 10, 1, 2)
        assert a.complete
        assert a.odds.home == 1.9
        assert a.injuries[0].player == "B. Keeper"
        assert a.head_to_head.home_wins == 1

    def test_failed_section_is_omitted(self, budget):
        client = make_client(route({
            "/odds": ODDS,
            "/injuries": lambda: httpx.Response(500),
            "/fixtures/headtohead": H2H,
        }), budget)
        a = build_match_analysis(client, 10, 1, 2)
        assert a.odds is not None and a.head_to_head is not None
        assert a.injuries is None
        assert "injuries" in a.errors
        assert not a.complete

    def test_malformed_section_is_omitted(self, budget):
        bad_odds = {"errors": [], "response": [{"bookmakers": [{"name": "X", "bets": [
            {"name": "Match Winner", "values": [{"value": "Home", "odd": "1.5"}]},
        ]}]}]}
        client = make_client(route({"/odds": bad_odds, "/injuries": INJURIES,
                                    "/fixtures/headtohead": H2H}), budget)
        a = build_match_analysis(client, 10, 1, 2)
        assert a.odds is None and "odds" in a.errors
        assert a.injuries and a.head_to_head

    def test_non_object_entries_only_drop_their_section(self, budget):
        client = make_client(route({
            "/odds": ODDS,
            "/injuries": {"errors": [], "response": ["not-an-object"]},
            "/fixtures/headtohead": lambda: httpx.Response(200, json=[1, 2]),
        }), budget)
        a = build_match_analysis(client, 10, 1, 2)
        assert a.odds is not None
        assert a.injuries is None and a.head_to_head is None
        assert set(a.errors) == {"injuries", "head_to_head"}

    def test_budget_exhaustion_skips_rest(self, counters, clock):
        guard = BudgetGuard(counters, limit=1, clock=clock)
        handler = route({"/odds": ODDS, "/injuries": INJURIES, "/fixtures/headtohead": H2H})
        a = build_match_analysis(make_client(handler, guard), 10, 1, 2)
        assert a.odds is not None
        assert "injuries" in a.errors
        assert a.skipped == ["head_to_head"]
        assert handler.seen == ["/odds"]

    def test_rate_limit_propagates(self, budget):
        client = make_client(route({
            "/odds": lambda: httpx.Response(429, headers={"Retry-After": "12"}),
        }), budget)
        with pytest.raises(RateLimitError):
            build_match_analysis(client, 10, 1, 2)
