# tourney_stats/routes/pubg.py
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from tourney_stats import config
from tourney_stats.errors import BadRequest
from tourney_stats.models import MatchSummary, TournamentAggregate
from tourney_stats.services import aggregator
from tourney_stats.services.aggregator import TourneyEngine
from tourney_stats.services.scoring import Scoring, table_scoring

router = APIRouter(prefix="/api/pubg", tags=["pubg"])

# includeMeta never expands more than this many summaries per request
META_LIMIT = 50


def get_engine() -> TourneyEngine:
  return aggregator.engine


def api_key(x_pubg_api_key: Optional[str] = Header(default=None)) -> str:
  """Per-tournament key from the header, else the deployment default."""
  key = (x_pubg_api_key or config.PUBG_API_KEY or "").strip()
  if not key:
    raise BadRequest("PUBG API key not configured")
  return key


def _scoring(points: Optional[Dict[str, int]]) -> Optional[Scoring]:
  return table_scoring(points) if points else None


# ----------------------------
# Request / response bodies
# ----------------------------
class MatchSummariesRequest(BaseModel):
  matchIds: Union[List[str], str]
  onlyCustom: bool = False
  placementPoints: Optional[Dict[str, int]] = None


class CustomMatchesRequest(BaseModel):
  playerNames: Union[List[str], str]
  limit: int = 12
  fresh: bool = False
  includeNonCustom: bool = False
  placementPoints: Optional[Dict[str, int]] = None


class MatchIdsRequest(BaseModel):
  matchIds: Union[List[str], str]
  limit: int = 12
  fresh: bool = False
  onlyCustom: bool = True
  placementPoints: Optional[Dict[str, int]] = None


class MatchSummariesResponse(BaseModel):
  matches: List[MatchSummary] = []
  failed: List[str] = []
  meta: Dict[str, Union[int, bool]] = Field(default_factory=dict)


# ----------------------------
# Routes
# ----------------------------
@router.get("/player-matches")
async def player_matches(
    name: str = "",
    limit: int = 50,
    includeMeta: bool = False,
    onlyCustom: bool = False,
    fresh: bool = False,
    key: str = Depends(api_key),
    eng: TourneyEngine = Depends(get_engine),
):
  """
  Example:
    /api/pubg/player-matches?name=shroud&limit=20&includeMeta=true&onlyCustom=true
  """
  name = name.strip()
  if not name:
    raise BadRequest("Player name is required")
  match_ids = await eng.fetch_player_matches(key, name, limit, fresh)
  if not includeMeta:
    return {"player": name, "matches": match_ids}

  meta_limit = min(len(match_ids), META_LIMIT)
  if not meta_limit:
    return {"player": name, "matches": [], "failed": [], "meta": {"limited_to": 0, "only_custom": onlyCustom}}
  result = await eng.fetch_match_summaries_with_failures(key, match_ids[:meta_limit])
  matches = [m for m in result.summaries if m.is_custom_match] if onlyCustom else result.summaries
  return {
    "player": name,
    "matches": [m.model_dump(mode="json") for m in matches],
    "failed": result.failed,
    "meta": {"limited_to": meta_limit, "only_custom": onlyCustom},
  }


@router.post("/match-summaries", response_model=MatchSummariesResponse)
async def match_summaries(
    body: MatchSummariesRequest,
    key: str = Depends(api_key),
    eng: TourneyEngine = Depends(get_engine),
):
  result = await eng.fetch_match_summaries_with_failures(key, body.matchIds, _scoring(body.placementPoints))
  matches = [m for m in result.summaries if m.is_custom_match] if body.onlyCustom else result.summaries
  return MatchSummariesResponse(
    matches=matches,
    failed=result.failed,
    meta={"requested": len(result.summaries) + len(result.failed), "only_custom": body.onlyCustom},
  )


@router.get("/tournaments/{tournament_id}/aggregate", response_model=TournamentAggregate)
async def tournament_aggregate(
    tournament_id: str,
    limit: int = 12,
    fresh: bool = False,
    key: str = Depends(api_key),
    eng: TourneyEngine = Depends(get_engine),
):
  return await eng.aggregate_tournament(key, tournament_id, limit, fresh)


@router.post("/aggregate/custom-matches", response_model=TournamentAggregate)
async def custom_matches_aggregate(
    body: CustomMatchesRequest,
    key: str = Depends(api_key),
    eng: TourneyEngine = Depends(get_engine),
):
  return await eng.aggregate_custom_matches(
    key, body.playerNames, body.limit, body.fresh, body.includeNonCustom, _scoring(body.placementPoints))


@router.post("/aggregate/match-ids", response_model=TournamentAggregate)
async def match_ids_aggregate(
    body: MatchIdsRequest,
    key: str = Depends(api_key),
    eng: TourneyEngine = Depends(get_engine),
):
  return await eng.aggregate_match_ids(
    key, body.matchIds, body.limit, body.fresh, body.onlyCustom, _scoring(body.placementPoints))
