from fastapi import FastAPI, Depends, HTTPException, Header
from fastapi.responses import PlainTextResponse
from typing import Optional
from .catalog import CatalogGame
from .config import settings
from .models import utc_now

app = FastAPI(title="playsync")
service = None  # set by SyncService on startup

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

def require_service():
    if service is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return service

@app.get("/healthz")
def healthz():
    if service is None:
        return {"status": "starting"}

    last_sync = service.install_state.get_cursor().last_sync_at
    if last_sync is None:
        return {"status": "ok", "last_sync_age": None}

    # Lenient: report lagging after three missed intervals
    age = (utc_now() - last_sync).total_seconds()
    if age > settings.SYNC_INTERVAL_SECONDS * 3 + 60:
        return {"status": "lagging", "last_sync_age": age}
    return {"status": "ok", "last_sync_age": age}

@app.get("/status", dependencies=[Depends(get_token)])
def status():
    if service is None:
        return {"status": "not_ready"}

    cursor = service.install_state.get_cursor()
    session = service.install_state.get_session()
    return {
        "install_id": service.install_state.install_id,
        "breaker": {
            "state": service.breaker.state.value,
            "failure_count": service.breaker.failure_count,
        },
        "pending_operations": len(service.queue),
        "session": session.model_dump(mode="json"),
        "cursor": cursor.model_dump(mode="json"),
        "library_baseline": service.snapshots.has_library_baseline,
        "achievements_baseline": service.snapshots.has_achievements_baseline,
        "allowed_plugins": len(service.sources.snapshot()),
        "config": {
            "interval": settings.SYNC_INTERVAL_SECONDS,
            "full_sync_interval": settings.FULL_SYNC_INTERVAL_SECONDS,
            "sync_achievements": settings.SYNC_ACHIEVEMENTS,
            "scrobbling": not settings.DISABLE_SCROBBLING,
        }
    }

@app.get("/metrics", response_class=PlainTextResponse)
def metrics():
    # Simple prometheus-style text format
    if service is None:
        return ""

    cursor = service.install_state.get_cursor()
    last_sync = cursor.last_sync_at.timestamp() if cursor.last_sync_at else 0
    breaker_open = 0 if service.breaker.state.value == "closed" else 1
    lines = [
        f'playsync_pending_operations {len(service.queue)}',
        f'playsync_last_sync_timestamp {last_sync}',
        f'playsync_last_sync_game_count {cursor.last_sync_count}',
        f'playsync_breaker_open {breaker_open}',
        f'playsync_breaker_failures {service.breaker.failure_count}',
    ]
    return "\n".join(lines)

@app.post("/events/game-started", dependencies=[Depends(get_token)])
async def game_started(game: CatalogGame):
    await require_service().scrobbler.on_game_started(game)
    return {"status": "accepted"}

@app.post("/events/game-stopped", dependencies=[Depends(get_token)])
async def game_stopped(game: CatalogGame):
    await require_service().scrobbler.on_game_stopped(game)
    return {"status": "accepted"}

@app.post("/events/library-changed", dependencies=[Depends(get_token)])
async def library_changed(full: bool = False):
    require_service().schedule_sync(full=full)
    return {"status": "scheduled", "full": full}
