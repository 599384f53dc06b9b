# tourney_stats/services/enumerator.py
import logging
from typing import Iterable, List, Optional

from tourney_stats.config import MATCH_LIST_CEILING, MATCH_LIST_TTL
from tourney_stats.errors import BadRequest
from tourney_stats.models import AccountScope, EnumerationScope, MatchIdScope, TournamentScope
from tourney_stats.util.freshness_cache import FreshnessCache, key_for

log = logging.getLogger("enumerator")


def clamp_limit(limit, ceiling: int = MATCH_LIST_CEILING) -> int:
  """Silently truncate to the upstream ceiling; never reject a large limit."""
  try:
    n = int(limit)
  except (TypeError, ValueError):
    raise BadRequest(f"limit must be an integer, got {limit!r}")
  return max(1, min(n, ceiling))


def normalize_match_ids(value) -> List[str]:
  """Accepts a list or a comma-separated string; trims, drops blanks, de-duplicates in order."""
  if not value:
    return []
  items: Iterable = value if isinstance(value, (list, tuple)) else str(value).split(",")
  seen, out = set(), []
  for item in items:
    mid = str(item).strip()
    if mid and mid not in seen:
      seen.add(mid)
      out.append(mid)
  return out


async def list_match_ids(
    client,
    scope: EnumerationScope,
    limit,
    *,
    cache: Optional[FreshnessCache] = None,
    fresh: bool = False,
    ceiling: int = MATCH_LIST_CEILING,
) -> List[str]:
  """
  Recent match ids for a scope, most recent first as reported upstream.
  Explicit id sets pass through without a network call.
  """
  n = clamp_limit(limit, ceiling)

  if isinstance(scope, MatchIdScope):
    return normalize_match_ids(scope.match_ids)[:n]

  if isinstance(scope, AccountScope):
    what = ("account", scope.account_id)
    fetch = lambda: client.player_match_ids(scope.account_id)
  elif isinstance(scope, TournamentScope):
    what = ("tournament", scope.tournament_id)
    fetch = lambda: client.tournament_match_ids(scope.tournament_id)
  else:
    raise BadRequest(f"unsupported enumeration scope {type(scope).__name__}")

  if not what[1]:
    raise BadRequest(f"{what[0]} id is required")

  if cache is None:
    ids = await fetch()
  else:
    # full upstream list is cached; limits slice it
    ids = await cache.get_or_compute(
      key_for("mids", {"kind": what[0], "id": what[1], "shard": getattr(client, "shard", "")}),
      MATCH_LIST_TTL, fresh, fetch,
    )
  log.debug("%s %s: %d ids upstream, returning %d", what[0], what[1], len(ids), min(n, len(ids)))
  return list(ids[:n])
