import asyncio

import httpx
import pytest

from tests.helpers import FakeClient, match_doc, transport_error
from tourney_stats.errors import MalformedPayload
from tourney_stats.pubg_client import PubgClient
from tourney_stats.services.fetcher import fetch_many, parse_match
from tourney_stats.util.freshness_cache import FreshnessCache
from tourney_stats.util.governor import RateGovernor, RetryPolicy


def test_parse_match_reads_summary_fields():
  s = parse_match(match_doc("m1", "2024-05-01T18:30:00Z", [
    ("1", 2, [("account.a", "Alpha", 3), ("account.b", "Bravo", 1)]),
    ("2", 1, [("account.c", "Charlie", 4)]),
  ], custom=True, map_name="Desert_Main"))
  assert s.match_id == "m1"
  assert s.map == "Desert_Main"
  assert s.game_mode == "squad-fpp"
  assert s.is_custom_match is True
  assert s.created_at.year == 2024 and s.created_at.tzinfo is not None
  by_id = {p.account_id: p for p in s.participants}
  assert by_id["account.c"].placement == 1
  assert by_id["account.a"].placement == 2
  assert by_id["account.a"].team_id == "1"
  assert by_id["account.b"].kills == 1
  assert all(p.points == 0 for p in s.participants)


def test_tied_team_ranks_are_broken_by_account_id():
  s = parse_match(match_doc("m1", "2024-05-01T18:30:00Z", [
    ("7", 2, [("account.z", "Zed", 0)]),
    ("4", 2, [("account.m", "Mike", 0)]),
    ("9", 1, [("account.q", "Quinn", 0)]),
  ]))
  placements = {p.team_id: p.placement for p in s.participants}
  assert placements == {"9": 1, "4": 2, "7": 3}


def test_solo_modes_have_no_team():
  s = parse_match(match_doc("m1", "2024-05-01T18:30:00Z", [
    ("1", 2, [("account.a", "Alpha", 1)]),
    ("2", 1, [("account.b", "Bravo", 5)]),
  ], game_mode="solo-fpp"))
  assert all(p.team_id is None for p in s.participants)
  assert sorted(p.placement for p in s.participants) == [1, 2]


def test_malformed_payloads_are_rejected():
  with pytest.raises(MalformedPayload):
    parse_match({"data": None})
  with pytest.raises(MalformedPayload):
    parse_match(match_doc("m1", "yesterday", [("1", 1, [("account.a", "A", 0)])]))
  with pytest.raises(MalformedPayload):
    parse_match(match_doc("m1", "2024-05-01T18:30:00Z", []))


def test_fetch_many_records_failures_without_aborting():
  client = FakeClient(matches={
    "m1": match_doc("m1", "2024-05-01T10:00:00Z", [("1", 1, [("account.a", "A", 1)])]),
    "m2": transport_error("m2"),
    "m3": match_doc("m3", "2024-05-02T10:00:00Z", [("1", 1, [("account.a", "A", 2)])]),
    "m4": {"data": {"id": "m4"}},
  })
  result = asyncio.run(fetch_many(client, ["m1", "m2", "m3", "m4", "missing"]))
  assert [s.match_id for s in result.summaries] == ["m3", "m1"]
  assert sorted(result.failed) == ["m2", "m4", "missing"]


def test_fetched_matches_are_cached_but_failures_are_not():
  client = FakeClient(matches={
    "m1": match_doc("m1", "2024-05-01T10:00:00Z", [("1", 1, [("account.a", "A", 1)])]),
  })
  cache = FreshnessCache()

  async def run():
    await fetch_many(client, ["m1", "gone"], cache=cache)
    await fetch_many(client, ["m1", "gone"], cache=cache)

  asyncio.run(run())
  # m1 once, the missing id both times
  assert client.calls["match"] == 3


def _good(match_id, minutes=0):
  return match_doc(match_id, f"2024-05-01T10:{minutes:02d}:00Z", [("1", 1, [("account.a", "A", 1)])])


@pytest.mark.parametrize("bad", [
  {"data": {"id": "m2", "attributes": "oops"}},
  {"data": {"id": "m2", "attributes": ["createdAt"]}},
  {"data": {"id": "m2", "attributes": {}}, "included": "participants"},
  {"data": {"id": "m2", "attributes": {}}, "included": [
    {"type": "participant", "id": "p1", "attributes": {"stats": "kills=3"}},
  ]},
  {"data": {"id": "m2", "attributes": {"createdAt": "2024-05-01T10:00:00Z"}}, "included": [
    {"type": "participant", "id": "p1", "attributes": {"stats": {"playerId": "account.a"}}},
    {"type": "roster", "id": "r1", "attributes": {"stats": {"rank": 1}}, "relationships": {"participants": "p1"}},
  ]},
])
def test_oddly_shaped_payload_only_fails_its_own_match(bad):
  client = FakeClient(matches={"m1": _good("m1"), "m2": bad})
  result = asyncio.run(fetch_many(client, ["m1", "m2"]))
  assert [s.match_id for s in result.summaries] == ["m1"]
  assert result.failed == ["m2"]


def test_parse_match_rejects_non_object_attributes():
  with pytest.raises(MalformedPayload):
    parse_match({"data": {"id": "m2", "attributes": "oops"}})


def _paced_client(handler, *, rate_per_sec, burst, timeout):
  governor = RateGovernor(
    rate_per_sec=rate_per_sec,
    burst=burst,
    timeout=timeout,
    policy=RetryPolicy(max_attempts=1, jitter=0),
  )
  return PubgClient(
    "k", base_url="https://api.example.test", governor=governor, transport=httpx.MockTransport(handler),
  )


def test_time_queued_behind_the_rate_limit_does_not_fail_matches():
  docs = {f"m{i}": _good(f"m{i}", i) for i in range(6)}

  def handler(request):
    return httpx.Response(200, json=docs[request.url.path.rsplit("/", 1)[-1]])

  async def run():
    # two immediate tokens, then one every 0.1s: the last match waits ~0.4s, past the 0.25s send timeout
    async with _paced_client(handler, rate_per_sec=10, burst=2, timeout=0.25) as c:
      return await fetch_many(c, list(docs))

  result = asyncio.run(run())
  assert result.failed == []
  assert len(result.summaries) == 6


def test_slow_upstream_send_fails_only_that_match():
  async def handler(request):
    mid = request.url.path.rsplit("/", 1)[-1]
    if mid == "slow":
      await asyncio.sleep(1.0)
    return httpx.Response(200, json=_good(mid))

  async def run():
    async with _paced_client(handler, rate_per_sec=0, burst=1, timeout=0.05) as c:
      return await fetch_many(c, ["fast", "slow"])

  result = asyncio.run(run())
  assert [s.match_id for s in result.summaries] == ["fast"]
  assert result.failed == ["slow"]
