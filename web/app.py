from contextlib import asynccontextmanager
import logging
import os
import sys
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from q3ladder.config import Settings
from q3ladder.errors import ProviderTimeout, ProviderUnavailable
from q3ladder.service import LadderService

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

service: Optional[LadderService] = None


@asynccontextmanager
async def lifespan(_app: FastAPI):
    global service
    owned = service is None
    if owned:
        service = LadderService(Settings.from_env())
    service.start()
    try:
        yield
    finally:
        if owned:
            service.stop()
            service = None


app = FastAPI(title="q3ladder", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_methods=["GET"],
)


def get_service() -> LadderService:
    if service is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return service


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(int(value), high))


@app.get("/health")
def health() -> dict:
    return {"ok": True}


@app.get("/api/status")
def live_status(svc: LadderService = Depends(get_service)) -> dict:
    try:
        return svc.snapshots.get_live_status()
    except ProviderTimeout as e:
        raise HTTPException(status_code=504, detail=str(e))
    except ProviderUnavailable as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/api/match")
def current_match(response: Response, includeBots: bool = False,
                  svc: LadderService = Depends(get_service)) -> dict:
    response.headers.update(NO_STORE_HEADERS)
    return svc.snapshots.get_current_match(include_bots=includeBots)


@app.get("/api/summary")
def summary(request: Request, limit: int = 25, includeBots: bool = False,
            svc: LadderService = Depends(get_service)):
    snapshot = svc.snapshots.get_snapshot(limit=_clamp(limit, 1, 200), include_bots=includeBots)
    etag = f'"{snapshot.etag}"'
    headers = {"ETag": etag, "Cache-Control": "no-cache"}
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=headers)
    return JSONResponse(content=snapshot.body, headers=headers)


@app.get("/api/ladder")
def ladder(limit: int = 100, offset: int = 0, includeBots: bool = False,
           svc: LadderService = Depends(get_service)) -> dict:
    players = svc.snapshots.get_ladder(_clamp(limit, 1, 500), include_bots=includeBots, offset=max(0, offset))
    return {"players": players}


@app.get("/api/matches")
def matches(limit: int = 10, svc: LadderService = Depends(get_service)) -> dict:
    return {"matches": svc.db.recent_matches(_clamp(limit, 1, 50))}


@app.get("/api/matches/{match_id}")
def match_detail(match_id: int, svc: LadderService = Depends(get_service)) -> dict:
    data = svc.db.match_detail(match_id)
    if not data:
        raise HTTPException(status_code=404, detail="match not found")
    return data


@app.get("/api/players")
def players(limit: int = 50, search: str = "", svc: LadderService = Depends(get_service)) -> dict:
    return {"players": svc.db.list_players(_clamp(limit, 1, 200), search.strip())}


@app.get("/api/players/{name}")
def player_profile(name: str, sinceDays: Optional[float] = None, topN: int = 10,
                   svc: LadderService = Depends(get_service)) -> dict:
    data = svc.snapshots.get_player_profile(name, since_days=sinceDays, top_n=_clamp(topN, 1, 100))
    if not data:
        raise HTTPException(status_code=404, detail="player not found")
    return data


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
