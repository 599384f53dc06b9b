from typing import Optional


class TourneyError(Exception):
  """Base class for engine errors that map onto an HTTP status at the boundary."""

  status_code = 500
  title = "Internal error"
  code = "internal_error"

  def __init__(self, detail: Optional[str] = None) -> None:
    super().__init__(detail or self.title)
    self.detail = detail


class BadRequest(TourneyError):
  status_code = 400
  title = "Bad request"
  code = "bad_request"


class NotFound(TourneyError):
  status_code = 404
  title = "Not found"
  code = "not_found"


class UpstreamUnavailable(TourneyError):
  """Transport error, timeout, or exhausted retry budget talking to the PUBG API."""

  status_code = 503
  title = "PUBG API error"
  code = "upstream_unavailable"

  def __init__(self, detail: Optional[str] = None, *, upstream_status: Optional[int] = None) -> None:
    super().__init__(detail)
    self.upstream_status = upstream_status


class MalformedPayload(TourneyError):
  status_code = 502
  title = "Malformed upstream payload"
  code = "malformed_payload"
