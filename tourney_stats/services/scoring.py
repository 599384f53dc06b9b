# tourney_stats/services/scoring.py
from typing import Callable, Dict, Mapping, Optional

from tourney_stats.config import DEFAULT_PLACEMENT_POINTS
from tourney_stats.errors import BadRequest


class Scoring:
  """
  Placement -> points. Tournament rules vary, so the aggregator always takes
  one of these as a parameter. `name` identifies the rule set in cache keys.
  """

  def __init__(self, name: str, fn: Callable[[int], int]):
    self.name = name
    self._fn = fn

  def __call__(self, placement: int) -> int:
    return max(0, int(self._fn(placement)))

  def __repr__(self) -> str:
    return f"Scoring({self.name!r})"


def table_scoring(table: Mapping, *, name: Optional[str] = None) -> Scoring:
  """Points from a {placement: points} table; unlisted placements score 0."""
  try:
    points: Dict[int, int] = {int(k): int(v) for k, v in (table or {}).items()}
  except (TypeError, ValueError):
    raise BadRequest("placementPoints must map integer placements to integer points")
  if any(k < 1 for k in points) or any(v < 0 for v in points.values()):
    raise BadRequest("placementPoints needs placements >= 1 and points >= 0")
  label = name or "table:" + ",".join(f"{k}={v}" for k, v in sorted(points.items()))
  return Scoring(label, lambda placement: points.get(placement, 0))


def linear_scoring(base: int) -> Scoring:
  """points = max(0, base - placement)"""
  return Scoring(f"linear:{base}", lambda placement: base - placement)


DEFAULT_SCORING = table_scoring(DEFAULT_PLACEMENT_POINTS, name="pubg-default")
