import json
import os
from dotenv import load_dotenv

load_dotenv()

# Only the HTTP boundary falls back to this; the engine always takes the key as a parameter.
PUBG_API_KEY = os.getenv("PUBG_API_KEY", "").strip()

PUBG_API_BASE = os.getenv("PUBG_API_BASE", "https://api.pubg.com").rstrip("/")
PUBG_SHARD = os.getenv("PUBG_SHARD", "steam")

# upstream refuses to list more than this many recent matches
MATCH_LIST_CEILING = int(os.getenv("MATCH_LIST_CEILING", "60"))

# Cache windows (seconds)
MATCH_TTL = int(os.getenv("MATCH_TTL", "3600"))
MATCH_LIST_TTL = int(os.getenv("MATCH_LIST_TTL", "120"))
AGGREGATE_TTL = int(os.getenv("AGGREGATE_TTL", "60"))

#Rate governor
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "20"))
UPSTREAM_MAX_CONCURRENCY = int(os.getenv("UPSTREAM_MAX_CONCURRENCY", "8"))
UPSTREAM_RATE_PER_SEC = float(os.getenv("UPSTREAM_RATE_PER_SEC", str(10 / 60)))
UPSTREAM_BURST = int(os.getenv("UPSTREAM_BURST", "10"))
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "4"))
RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "0.5"))
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", "8.0"))

# Standard PUBG esports placement table; tournaments may override per request.
DEFAULT_PLACEMENT_POINTS = {
  1: 10, 2: 6, 3: 5, 4: 4, 5: 3, 6: 2, 7: 1, 8: 1,
}
_raw_points = os.getenv("DEFAULT_PLACEMENT_POINTS")
if _raw_points:
  DEFAULT_PLACEMENT_POINTS = {int(k): int(v) for k, v in json.loads(_raw_points).items()}
