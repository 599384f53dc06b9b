# tourney_stats/pubg_client.py
import logging
from typing import Any, List, Optional
from urllib.parse import quote

import httpx

from tourney_stats.config import FETCH_TIMEOUT, PUBG_API_BASE, PUBG_SHARD
from tourney_stats.errors import BadRequest
from tourney_stats.util.governor import RateGovernor, governor_for

log = logging.getLogger("pubg_client")
if not log.handlers:
  h = logging.StreamHandler()
  h.setFormatter(logging.Formatter("[PUBG] %(levelname)s: %(message)s"))
  log.addHandler(h)
  log.setLevel(logging.INFO)

# filter[playerNames] accepts at most this many names per request
PLAYER_NAMES_PER_CALL = 10


class PubgClient:
  """
  Thin async adapter over the PUBG JSON:API. Every request goes through the
  RateGovernor of the key it was created with; nothing is cached here.
  """

  def __init__(
      self,
      api_key: str,
      *,
      shard: str = PUBG_SHARD,
      base_url: str = PUBG_API_BASE,
      governor: Optional[RateGovernor] = None,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    if not (api_key or "").strip():
      raise BadRequest("PUBG API key not configured")
    self._api_key = api_key.strip()
    self.shard = shard
    self.base_url = base_url.rstrip("/")
    self.governor = governor or governor_for(self._api_key)
    self._transport = transport
    self._client: Optional[httpx.AsyncClient] = None

  async def __aenter__(self):
    limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
    # match documents with 100 participants are large; keep read timeout generous
    self._client = httpx.AsyncClient(
      base_url=self.base_url,
      timeout=httpx.Timeout(FETCH_TIMEOUT, connect=5.0),
      limits=limits,
      transport=self._transport,
      headers={
        "Authorization": f"Bearer {self._api_key}",
        "Accept": "application/vnd.api+json",
      },
    )
    return self

  async def __aexit__(self, *exc):
    if self._client:
      await self._client.aclose()
      self._client = None

  async def _get(self, path: str, *, params: Optional[dict] = None, what: str) -> Any:
    if self._client is None:
      raise RuntimeError("PubgClient must be used as an async context manager")

    async def send() -> httpx.Response:
      return await self._client.get(path, params=params)

    return await self.governor.call(send, what=what)

  # -------- Players (shard-scoped) --------
  async def players_by_names(self, names: List[str]) -> List[dict]:
    """Player objects for up to PLAYER_NAMES_PER_CALL names."""
    if not names:
      return []
    if len(names) > PLAYER_NAMES_PER_CALL:
      raise BadRequest(f"at most {PLAYER_NAMES_PER_CALL} player names per lookup")
    data = await self._get(
      f"/shards/{self.shard}/players",
      params={"filter[playerNames]": ",".join(names)},
      what=f"player lookup {','.join(names)}",
    )
    rows = data.get("data") if isinstance(data, dict) else None
    return rows if isinstance(rows, list) else []

  async def player(self, account_id: str) -> dict:
    data = await self._get(
      f"/shards/{self.shard}/players/{quote(account_id, safe='')}",
      what=f"player {account_id}",
    )
    return data.get("data") or {}

  async def player_match_ids(self, account_id: str) -> List[str]:
    player = await self.player(account_id)
    return _relationship_ids(player, "matches")

  # -------- Tournaments (not shard-scoped) --------
  async def tournament_match_ids(self, tournament_id: str) -> List[str]:
    data = await self._get(
      f"/tournaments/{quote(tournament_id, safe='')}",
      what=f"tournament {tournament_id}",
    )
    ids = _relationship_ids(data.get("data") or {}, "matches")
    if not ids:
      # some tournament documents only carry matches under `included`
      ids = [m.get("id") for m in data.get("included", []) if m.get("type") == "match" and m.get("id")]
    return ids

  # -------- Match detail (shard-scoped) --------
  async def match(self, match_id: str) -> dict:
    return await self._get(
      f"/shards/{self.shard}/matches/{quote(match_id, safe='')}",
      what=f"match {match_id}",
    )


def _relationship_ids(resource: dict, rel: str) -> List[str]:
  rows = ((resource.get("relationships") or {}).get(rel) or {}).get("data") or []
  return [r["id"] for r in rows if isinstance(r, dict) and r.get("id")]


def client_factory(api_key: str) -> PubgClient:
  return PubgClient(api_key)


