# tourney_stats/services/aggregator.py
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
import asyncio
import logging

from tourney_stats.config import AGGREGATE_TTL, MATCH_LIST_CEILING, MATCH_LIST_TTL
from tourney_stats.errors import BadRequest
from tourney_stats.models import (
  AccountScope,
  AggregatePolicy,
  AggregateScope,
  AggregateWindow,
  MatchIdScope,
  MatchSummary,
  PlayerNameScope,
  PlayerTotals,
  Totals,
  TournamentAggregate,
  TournamentScope,
)
from tourney_stats.pubg_client import client_factory as default_client_factory
from tourney_stats.services import identity
from tourney_stats.services.enumerator import clamp_limit, list_match_ids, normalize_match_ids
from tourney_stats.services.fetcher import FetchResult, fetch_many, sort_recent_first
from tourney_stats.services.scoring import DEFAULT_SCORING, Scoring
from tourney_stats.util.freshness_cache import FreshnessCache, key_for

log = logging.getLogger("aggregator")
if not log.handlers:
  h = logging.StreamHandler()
  h.setFormatter(logging.Formatter("[AGG] %(levelname)s: %(message)s"))
  log.addHandler(h)
  log.setLevel(logging.INFO)


# ----------------------------
# Input normalisation
# ----------------------------
def normalize_names(value) -> List[str]:
  """List or comma-separated string -> trimmed names, case-insensitive de-dup, input order kept."""
  if not value:
    return []
  items = value if isinstance(value, (list, tuple)) else str(value).split(",")
  seen, out = set(), []
  for item in items:
    name = str(item).strip()
    if name and name.lower() not in seen:
      seen.add(name.lower())
      out.append(name)
  return out


def _standings(rows: Dict[str, dict]) -> List[Tuple[str, dict]]:
  return sorted(rows.items(), key=lambda kv: (-kv[1]["points"], -kv[1]["kills"], kv[0]))


# ----------------------------
# Reduction
# ----------------------------
def aggregate(
    summaries: Iterable[MatchSummary],
    policy: AggregatePolicy,
    scoring: Scoring = DEFAULT_SCORING,
    *,
    scope: AggregateScope,
    window: AggregateWindow,
    failed: Iterable[str] = (),
) -> TournamentAggregate:
  """
  Fold match summaries into per-team and per-player totals.

  With policy.only_custom, non-custom matches are dropped (listed in
  skipped_match_ids), never zero-filled. A player adds its kills and the
  placement points of its own finish. A team adds the kills of all its members
  but its placement points and matches_counted only once per match.
  """
  ordered: List[MatchSummary] = []
  seen_ids = set()
  for s in sort_recent_first(list(summaries)):
    if s.match_id not in seen_ids:
      seen_ids.add(s.match_id)
      ordered.append(s)

  players: Dict[str, dict] = {}
  teams: Dict[str, dict] = {}
  used: List[str] = []
  skipped: List[str] = []

  for s in ordered:
    if policy.only_custom and not s.is_custom_match:
      skipped.append(s.match_id)
      continue
    used.append(s.match_id)

    counted_accounts = set()
    counted_teams = set()
    for p in s.participants:
      if p.account_id in counted_accounts:
        continue
      counted_accounts.add(p.account_id)
      pts = scoring(p.placement)

      pr = players.get(p.account_id)
      if pr is None:
        # summaries run newest first, so the first sighting carries the current name/team
        pr = players[p.account_id] = {
          "kills": 0, "points": 0, "matches_counted": 0, "name": p.name, "team_id": p.team_id,
        }
      pr["kills"] += p.kills
      pr["points"] += pts
      pr["matches_counted"] += 1

      if p.team_id is None:
        continue
      tr = teams.setdefault(p.team_id, {"kills": 0, "points": 0, "matches_counted": 0})
      tr["kills"] += p.kills
      if p.team_id not in counted_teams:
        counted_teams.add(p.team_id)
        tr["points"] += pts
        tr["matches_counted"] += 1

  return TournamentAggregate(
    scope=scope,
    window=window,
    team_totals={tid: Totals(**row) for tid, row in _standings(teams)},
    player_totals={aid: PlayerTotals(**row) for aid, row in _standings(players)},
    failed_match_ids=sorted(set(failed)),
    match_ids=used,
    skipped_match_ids=skipped,
    generated_at=datetime.now(timezone.utc),
  )


# ----------------------------
# Engine
# ----------------------------
class TourneyEngine:
  """
  The five operations the application calls. Every result goes through one
  FreshnessCache; the API key is always an explicit argument.
  """

  def __init__(
      self,
      *,
      client_factory: Callable = default_client_factory,
      cache: Optional[FreshnessCache] = None,
      scoring: Scoring = DEFAULT_SCORING,
      aggregate_ttl: float = AGGREGATE_TTL,
      ceiling: int = MATCH_LIST_CEILING,
  ):
    self.client_factory = client_factory
    self.cache = cache if cache is not None else FreshnessCache()
    self.scoring = scoring
    self.aggregate_ttl = aggregate_ttl
    self.ceiling = ceiling

  # -------- raw paths --------
  async def fetch_player_matches(self, api_key: str, player_name: str, limit=50, fresh: bool = False) -> List[str]:
    name = str(player_name or "").strip()
    if not name:
      raise BadRequest("Player name is required")
    n = clamp_limit(limit, self.ceiling)

    async def compute() -> List[str]:
      async with self.client_factory(api_key) as client:
        account_id = await identity.resolve(client, name)
        return await list_match_ids(client, AccountScope(account_id=account_id), n,
                                    cache=self.cache, fresh=fresh, ceiling=self.ceiling)

    key = key_for("player-matches", {"name": name.lower(), "limit": n})
    return list(await self.cache.get_or_compute(key, MATCH_LIST_TTL, fresh, compute))

  async def fetch_match_summaries_with_failures(
      self, api_key: str, match_ids, scoring: Optional[Scoring] = None,
  ) -> FetchResult:
    ids = normalize_match_ids(match_ids)
    if not ids:
      raise BadRequest("At least one match id is required")
    scoring = scoring or self.scoring
    async with self.client_factory(api_key) as client:
      result = await fetch_many(client, ids, cache=self.cache)
    scored = [
      s.model_copy(update={
        "participants": [p.model_copy(update={"points": scoring(p.placement)}) for p in s.participants],
      })
      for s in result.summaries
    ]
    return FetchResult(summaries=scored, failed=result.failed)

  async def fetch_match_summaries(self, api_key: str, match_ids, scoring: Optional[Scoring] = None) -> List[MatchSummary]:
    return (await self.fetch_match_summaries_with_failures(api_key, match_ids, scoring)).summaries

  # -------- aggregates --------
  async def _cached_aggregate(
      self,
      entry: str,
      scope: AggregateScope,
      key_scope: dict,
      limit: int,
      policy: AggregatePolicy,
      scoring: Scoring,
      fresh: bool,
      collect: Callable[[], Awaitable[FetchResult]],
  ) -> TournamentAggregate:
    # `fresh` decides bypass, not identity, so it stays out of the key
    key = key_for("agg", {
      "entry": entry,
      "scope": key_scope,
      "limit": limit,
      "policy": policy.model_dump(),
      "scoring": scoring.name,
    })

    async def compute() -> TournamentAggregate:
      fetched = await collect()
      agg = aggregate(
        fetched.summaries, policy, scoring,
        scope=scope,
        window=AggregateWindow(limit=limit, fresh=fresh, only_custom=policy.only_custom),
        failed=fetched.failed,
      )
      log.info("%s: %d matches reduced, %d skipped, %d failed",
               entry, len(agg.match_ids), len(agg.skipped_match_ids), len(agg.failed_match_ids))
      return agg

    return await self.cache.get_or_compute(key, self.aggregate_ttl, fresh, compute)

  async def aggregate_tournament(
      self, api_key: str, tournament_id: str, limit=12, fresh: bool = False, scoring: Optional[Scoring] = None,
  ) -> TournamentAggregate:
    tid = str(tournament_id or "").strip()
    if not tid:
      raise BadRequest("PUBG tournament ID not configured")
    n = clamp_limit(limit, self.ceiling)
    scoring = scoring or self.scoring

    async def collect() -> FetchResult:
      async with self.client_factory(api_key) as client:
        ids = await list_match_ids(client, TournamentScope(tournament_id=tid), n,
                                   cache=self.cache, fresh=fresh, ceiling=self.ceiling)
        return await fetch_many(client, ids, cache=self.cache)

    # tournament matches are sanctioned by definition: no custom filter
    return await self._cached_aggregate(
      "tournament", TournamentScope(tournament_id=tid), {"tournament_id": tid},
      n, AggregatePolicy(only_custom=False), scoring, fresh, collect,
    )

  async def aggregate_custom_matches(
      self, api_key: str, player_names, limit=12, fresh: bool = False,
      include_non_custom: bool = False, scoring: Optional[Scoring] = None,
  ) -> TournamentAggregate:
    names = normalize_names(player_names)
    if not names:
      raise BadRequest("Custom match needs match IDs or player names")
    n = clamp_limit(limit, self.ceiling)
    scoring = scoring or self.scoring

    async def collect() -> FetchResult:
      async with self.client_factory(api_key) as client:
        accounts = await identity.resolve_many(client, names)
        per_account = await asyncio.gather(*[
          list_match_ids(client, AccountScope(account_id=aid), n,
                         cache=self.cache, fresh=fresh, ceiling=self.ceiling)
          for aid in dict.fromkeys(accounts.values())
        ])
        union = list(dict.fromkeys(mid for ids in per_account for mid in ids))
        return await fetch_many(client, union, cache=self.cache)

    return await self._cached_aggregate(
      "custom-matches", PlayerNameScope(player_names=names),
      {"player_names": sorted(x.lower() for x in names)},
      n, AggregatePolicy(only_custom=not include_non_custom), scoring, fresh, collect,
    )

  async def aggregate_match_ids(
      self, api_key: str, match_ids, limit=12, fresh: bool = False,
      only_custom: bool = True, scoring: Optional[Scoring] = None,
  ) -> TournamentAggregate:
    n = clamp_limit(limit, self.ceiling)
    ids = normalize_match_ids(match_ids)[:n]
    if not ids:
      raise BadRequest("Custom match needs match IDs or player names")
    scoring = scoring or self.scoring

    async def collect() -> FetchResult:
      async with self.client_factory(api_key) as client:
        return await fetch_many(client, ids, cache=self.cache)

    return await self._cached_aggregate(
      "match-ids", MatchIdScope(match_ids=ids), {"match_ids": sorted(ids)},
      n, AggregatePolicy(only_custom=only_custom), scoring, fresh, collect,
    )


# ----------------------------
# Process-wide engine + boundary functions
# ----------------------------
engine = TourneyEngine()


async def fetch_player_matches(api_key: str, player_name: str, limit=50) -> List[str]:
  return await engine.fetch_player_matches(api_key, player_name, limit)


async def fetch_match_summaries(api_key: str, match_ids) -> List[MatchSummary]:
  return await engine.fetch_match_summaries(api_key, match_ids)


async def aggregate_tournament(api_key: str, tournament_id: str, limit=12, fresh: bool = False) -> TournamentAggregate:
  return await engine.aggregate_tournament(api_key, tournament_id, limit, fresh)


async def aggregate_custom_matches(api_key: str, player_names, limit=12, fresh: bool = False,
                                   include_non_custom: bool = False) -> TournamentAggregate:
  return await engine.aggregate_custom_matches(api_key, player_names, limit, fresh, include_non_custom)


async def aggregate_match_ids(api_key: str, match_ids, limit=12, fresh: bool = False,
                              only_custom: bool = True) -> TournamentAggregate:
  return await engine.aggregate_match_ids(api_key, match_ids, limit, fresh, only_custom)
