import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from tourney_stats.errors import TourneyError
from tourney_stats.routes.pubg import router as pubg_router

log = logging.getLogger("main")

app = FastAPI(title = "Tournament Stats Engine")

@app.exception_handler(TourneyError)
async def tourney_error_handler(request: Request, exc: TourneyError) -> JSONResponse:
    if exc.status_code >= 500:
        log.warning("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code = exc.status_code,
        content = {"error": exc.title, "detail": exc.detail, "code": exc.code},
    )

#health check
@app.get("/api/health", response_class = PlainTextResponse)
async def health():
    return "ok"

#register API routes
app.include_router(pubg_router)
