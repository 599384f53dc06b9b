# tourney_stats/services/fetcher.py
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from tourney_stats.config import MATCH_TTL
from tourney_stats.errors import MalformedPayload, TourneyError
from tourney_stats.models import MatchSummary, ParticipantStat
from tourney_stats.util.freshness_cache import FreshnessCache, key_for

log = logging.getLogger("fetcher")
if not log.handlers:
  h = logging.StreamHandler()
  h.setFormatter(logging.Formatter("[MF] %(levelname)s: %(message)s"))
  log.addHandler(h)
  log.setLevel(logging.INFO)

_UNRANKED = 10 ** 6


@dataclass
class FetchResult:
  summaries: List[MatchSummary] = field(default_factory=list)
  failed: List[str] = field(default_factory=list)


def sort_recent_first(summaries: List[MatchSummary]) -> List[MatchSummary]:
  return sorted(summaries, key=lambda s: (-s.created_at.timestamp(), s.match_id))


# ----------------------------
# Payload -> MatchSummary
# ----------------------------
def _parse_time(raw) -> datetime:
  if not isinstance(raw, str) or not raw:
    raise MalformedPayload(f"createdAt missing or not a string: {raw!r}")
  try:
    dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
  except ValueError as e:
    raise MalformedPayload(f"createdAt not ISO-8601: {raw!r}") from e
  return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _int(x, default: int = 0) -> int:
  try:
    return int(x)
  except (TypeError, ValueError):
    return default


def _obj(value, what: str) -> dict:
  if value is None:
    return {}
  if not isinstance(value, dict):
    raise MalformedPayload(f"{what} is a {type(value).__name__}, expected an object")
  return value


def is_solo_mode(game_mode: str) -> bool:
  return (game_mode or "").lower().startswith("solo")


def parse_match(payload: dict) -> MatchSummary:
  """
  Normalise a PUBG match document. Team placements are re-ranked into a
  permutation of 1..T: units sort by (reported rank, smallest member account id).
  """
  if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
    raise MalformedPayload("match document has no data object")
  data = payload["data"]
  match_id = data.get("id")
  if not match_id:
    raise MalformedPayload("match document has no id")
  attrs = _obj(data.get("attributes"), "match attributes")
  game_mode = attrs.get("gameMode") or ""

  included = payload.get("included") or []
  if not isinstance(included, list):
    raise MalformedPayload(f"match {match_id}: included is not a list")
  people: Dict[str, dict] = {}
  rosters: List[dict] = []
  for item in included:
    if not isinstance(item, dict):
      continue
    if item.get("type") == "participant" and item.get("id"):
      stats = _obj(_obj(item.get("attributes"), "participant attributes").get("stats"), "participant stats")
      if stats.get("playerId"):
        people[item["id"]] = stats
    elif item.get("type") == "roster":
      rosters.append(item)

  if not people:
    raise MalformedPayload(f"match {match_id} has no participants")

  # unit = (reported rank, team id or None, [participant stats])
  units = []
  if rosters and not is_solo_mode(game_mode):
    seen = set()
    for r in rosters:
      stats = _obj(_obj(r.get("attributes"), "roster attributes").get("stats"), "roster stats")
      refs = _obj(_obj(r.get("relationships"), "roster relationships").get("participants"), "roster participants").get("data") or []
      if not isinstance(refs, list):
        raise MalformedPayload(f"match {match_id}: roster participants are not a list")
      members = [people[ref["id"]] for ref in refs if isinstance(ref, dict) and ref.get("id") in people]
      if not members:
        continue
      seen.update(ref.get("id") for ref in refs if isinstance(ref, dict))
      team_id = stats.get("teamId")
      units.append((
        _int(stats.get("rank"), _UNRANKED),
        str(team_id) if team_id is not None else r.get("id"),
        members,
      ))
    # participants a roster forgot about still count, as their own unit
    for pid, stats in people.items():
      if pid not in seen:
        units.append((_int(stats.get("winPlace"), _UNRANKED), None, [stats]))
  else:
    for stats in people.values():
      units.append((_int(stats.get("winPlace"), _UNRANKED), None, [stats]))

  units.sort(key=lambda u: (u[0], min(str(m["playerId"]) for m in u[2])))

  participants: List[ParticipantStat] = []
  for placement, (_, team_id, members) in enumerate(units, start=1):
    for m in sorted(members, key=lambda m: str(m["playerId"])):
      participants.append(ParticipantStat(
        account_id=str(m["playerId"]),
        name=str(m.get("name") or ""),
        team_id=team_id,
        kills=max(0, _int(m.get("kills"))),
        placement=placement,
      ))

  return MatchSummary(
    match_id=str(match_id),
    created_at=_parse_time(attrs.get("createdAt")),
    map=attrs.get("mapName") or "",
    game_mode=game_mode,
    match_type=attrs.get("matchType") or "",
    is_custom_match=bool(attrs.get("isCustomMatch")),
    participants=participants,
  )


# ----------------------------
# Fetching
# ----------------------------
async def fetch_one(client, match_id: str, *, cache: Optional[FreshnessCache] = None) -> MatchSummary:
  async def load() -> MatchSummary:
    payload = await client.match(match_id)
    try:
      return parse_match(payload)
    except MalformedPayload:
      raise
    except (AttributeError, KeyError, TypeError, ValueError) as e:
      raise MalformedPayload(f"match {match_id}: {e.__class__.__name__}: {e}") from e

  if cache is None:
    return await load()
  # matches are historical records: never refreshed, only expired
  key = key_for("match", {"id": match_id, "shard": getattr(client, "shard", "")})
  return await cache.get_or_compute(key, MATCH_TTL, False, load)


async def fetch_many(
    client,
    match_ids: List[str],
    *,
    cache: Optional[FreshnessCache] = None,
) -> FetchResult:
  """
  Fetch every id independently. Any per-id failure (404, malformed payload,
  timeout, exhausted retries) lands in `failed`; the batch never aborts.
  Timeouts are enforced by the RateGovernor around each send, so time spent
  queued for a token or a slot never counts against a match.
  """
  ids = list(dict.fromkeys(match_ids))
  if not ids:
    return FetchResult()

  results = await asyncio.gather(*[fetch_one(client, mid, cache=cache) for mid in ids], return_exceptions=True)

  out = FetchResult()
  for mid, res in zip(ids, results):
    if isinstance(res, MatchSummary):
      out.summaries.append(res)
    elif isinstance(res, TourneyError):
      log.warning("match %s skipped: %s", mid, res)
      out.failed.append(mid)
    else:
      raise res
  out.summaries = sort_recent_first(out.summaries)
  return out
