"""
Pre-match analysis assembled from independent API-Football sections.

Each section (odds, injuries, head-to-head) is fetched and parsed on its
own. A failing section is left out and its error recorded; the others
still come back. Once the daily budget is exhausted the remaining sections
are skipped. A 429 is raised to the caller, whose backoff decides when to
try again.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from tipster.errors import BudgetExceededError, ExternalSourceError, RateLimitError, ValidationError
from tipster.records import (
    HeadToHeadRecord,
    InjuryRecord,
    OddsRecord,
    parse_head_to_head,
    parse_injuries,
    parse_odds,
)

log = logging.getLogger(__name__)

SECTIONS = ("odds", "injuries", "head_to_head")


@dataclass
class MatchAnalysis:
    fixture_id: int
    odds: Optional[OddsRecord] = None
    injuries: Optional[list[InjuryRecord]] = None
    head_to_head: Optional[HeadToHeadRecord] = None
    errors: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors and not self.skipped


def build_match_analysis(client, fixture_id: int, home_team_id: int, away_team_id: int) -> MatchAnalysis:
    """Fetch every section through *client* (an ApiFootballClient)."""
    sections: list[tuple[str, Callable[[], Any]]] = [
        ("odds", lambda: parse_odds(client.odds(fixture_id))),
        ("injuries", lambda: parse_injuries(client.injuries(fixture_id))),
        ("head_to_head", lambda: parse_head_to_head(
            client.head_to_head(home_team_id, away_team_id), home_team_id)),
    ]

    analysis = MatchAnalysis(fixture_id=fixture_id)
    for i, (name, load) in enumerate(sections):
        try:
            setattr(analysis, name, load())
        except RateLimitError:
            raise
        except BudgetExceededError as exc:
            analysis.errors[name] = str(exc)
            analysis.skipped = [n for n, _ in sections[i + 1:]]
            log.warning("analysis %s: budget exhausted at %s, skipping %s",
                        fixture_id, name, ", ".join(analysis.skipped) or "nothing")
            break
        except (ExternalSourceError, ValidationError) as exc:
            analysis.errors[name] = str(exc)
            log.warning("analysis %s: %s section omitted: %s", fixture_id, name, exc)

    if analysis.complete:
        log.info("analysis %s complete", fixture_id)
    return analysis
