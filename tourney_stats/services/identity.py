# tourney_stats/services/identity.py
from typing import Dict, List

from tourney_stats.errors import BadRequest, NotFound
from tourney_stats.pubg_client import PLAYER_NAMES_PER_CALL


def _clean(name) -> str:
  s = str(name or "").strip()
  if not s:
    raise BadRequest("Player name is required")
  return s


def _match_name(rows: List[dict], name: str):
  want = name.lower()
  for row in rows:
    if str((row.get("attributes") or {}).get("name", "")).lower() == want and row.get("id"):
      return row["id"]
  return None


async def resolve(client, name: str) -> str:
  """In-game name -> stable account id (case-insensitive exact match)."""
  name = _clean(name)
  rows = await client.players_by_names([name])
  account_id = _match_name(rows, name)
  if not account_id:
    raise NotFound(f"player '{name}' not found")
  return account_id


async def resolve_many(client, names: List[str]) -> Dict[str, str]:
  """
  Resolve several names, PLAYER_NAMES_PER_CALL per upstream call.
  Returns name -> account id in input order; any unresolved name aborts with NotFound.
  """
  cleaned = [_clean(n) for n in names]
  if not cleaned:
    raise BadRequest("Player name is required")

  resolved: Dict[str, str] = {}
  missing: List[str] = []
  for i in range(0, len(cleaned), PLAYER_NAMES_PER_CALL):
    chunk = cleaned[i:i + PLAYER_NAMES_PER_CALL]
    try:
      rows = await client.players_by_names(chunk)
    except NotFound:
      # upstream answers 404 when none of the names exist
      rows = []
    for name in chunk:
      account_id = _match_name(rows, name)
      if account_id:
        resolved[name] = account_id
      else:
        missing.append(name)

  if missing:
    raise NotFound(f"players not found: {', '.join(missing)}")
  return resolved
