from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ParticipantStat(BaseModel):
  model_config = ConfigDict(frozen=True)

  account_id: str
  name: str = ""
  team_id: Optional[str] = None
  kills: int = Field(default=0, ge=0)
  placement: int = Field(ge=1)
  points: int = Field(default=0, ge=0)


class MatchSummary(BaseModel):
  model_config = ConfigDict(frozen=True)

  match_id: str
  created_at: datetime
  map: str = ""
  game_mode: str = ""
  match_type: str = ""
  is_custom_match: bool = False
  participants: List[ParticipantStat] = []


# ----------------------------
# Scopes
# ----------------------------
class AccountScope(BaseModel):
  kind: Literal["account"] = "account"
  account_id: str


class TournamentScope(BaseModel):
  kind: Literal["tournament"] = "tournament"
  tournament_id: str


class MatchIdScope(BaseModel):
  kind: Literal["match_ids"] = "match_ids"
  match_ids: List[str]


class PlayerNameScope(BaseModel):
  kind: Literal["player_names"] = "player_names"
  player_names: List[str]


EnumerationScope = Union[AccountScope, TournamentScope, MatchIdScope]
AggregateScope = Union[TournamentScope, MatchIdScope, PlayerNameScope]


# ----------------------------
# Aggregates
# ----------------------------
class AggregatePolicy(BaseModel):
  model_config = ConfigDict(frozen=True)

  only_custom: bool = False


class Totals(BaseModel):
  kills: int = 0
  points: int = 0
  matches_counted: int = 0


class PlayerTotals(Totals):
  name: str = ""
  team_id: Optional[str] = None


class AggregateWindow(BaseModel):
  limit: int
  fresh: bool = False
  only_custom: bool = False


class TournamentAggregate(BaseModel):
  scope: AggregateScope = Field(discriminator="kind")
  window: AggregateWindow
  team_totals: Dict[str, Totals] = {}
  player_totals: Dict[str, PlayerTotals] = {}
  failed_match_ids: List[str] = []
  match_ids: List[str] = []
  skipped_match_ids: List[str] = []
  generated_at: datetime
