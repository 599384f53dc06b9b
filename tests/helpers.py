import asyncio
from collections import Counter

from tourney_stats.errors import NotFound, UpstreamUnavailable
from tourney_stats.services.aggregator import TourneyEngine
from tourney_stats.util.freshness_cache import FreshnessCache


def match_doc(match_id, created_at, teams, *, custom=True, game_mode="squad-fpp", map_name="Baltic_Main"):
  """
  PUBG-style match document.
  teams: [(team_id, rank, [(player_id, name, kills), ...]), ...]
  """
  included = []
  roster_refs = []
  for i, (team_id, rank, members) in enumerate(teams):
    refs = []
    for pid, name, kills in members:
      part_id = f"part-{match_id}-{pid}"
      refs.append({"type": "participant", "id": part_id})
      included.append({
        "type": "participant",
        "id": part_id,
        "attributes": {"stats": {"playerId": pid, "name": name, "kills": kills, "winPlace": rank}},
      })
    roster_id = f"roster-{match_id}-{i}"
    roster_refs.append({"type": "roster", "id": roster_id})
    included.append({
      "type": "roster",
      "id": roster_id,
      "attributes": {"stats": {"rank": rank, "teamId": team_id}, "won": "true" if rank == 1 else "false"},
      "relationships": {"participants": {"data": refs}},
    })
  return {
    "data": {
      "type": "match",
      "id": match_id,
      "attributes": {
        "createdAt": created_at,
        "mapName": map_name,
        "gameMode": game_mode,
        "isCustomMatch": custom,
        "matchType": "custom" if custom else "official",
        "shardId": "steam",
      },
      "relationships": {"rosters": {"data": roster_refs}},
    },
    "included": included,
  }


class FakeClient:
  """Stands in for PubgClient; counts every upstream call."""

  shard = "steam"

  def __init__(self, *, players=None, account_matches=None, tournaments=None, matches=None, delay=0.0):
    self.players = players or {}            # name -> account id
    self.account_matches = account_matches or {}
    self.tournaments = tournaments or {}
    self.matches = matches or {}            # id -> payload or Exception
    self.delay = delay
    self.calls = Counter()

  def __call__(self, api_key):
    self.last_key = api_key
    return self

  async def __aenter__(self):
    return self

  async def __aexit__(self, *exc):
    return None

  @property
  def total_calls(self):
    return sum(self.calls.values())

  async def _pause(self):
    await asyncio.sleep(self.delay)

  async def players_by_names(self, names):
    self.calls["players"] += 1
    await self._pause()
    rows = [
      {"type": "player", "id": self.players[n], "attributes": {"name": n}}
      for n in self.players if n.lower() in {x.lower() for x in names}
    ]
    if not rows:
      raise NotFound("no players")
    return rows

  async def player_match_ids(self, account_id):
    self.calls["player_matches"] += 1
    await self._pause()
    if account_id not in self.account_matches:
      raise NotFound(f"player {account_id}")
    return list(self.account_matches[account_id])

  async def tournament_match_ids(self, tournament_id):
    self.calls["tournament"] += 1
    await self._pause()
    if tournament_id not in self.tournaments:
      raise NotFound(f"tournament {tournament_id}")
    return list(self.tournaments[tournament_id])

  async def match(self, match_id):
    self.calls["match"] += 1
    await self._pause()
    payload = self.matches.get(match_id)
    if payload is None:
      raise NotFound(f"match {match_id}")
    if isinstance(payload, Exception):
      raise payload
    return payload


def make_engine(client, **kw):
  kw.setdefault("cache", FreshnessCache())
  return TourneyEngine(client_factory=client, **kw)


def transport_error(match_id):
  return UpstreamUnavailable(f"match {match_id}: transport error (ConnectError)")
