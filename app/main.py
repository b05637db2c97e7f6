import asyncio
import os
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from monstersweeper.modes import DEFAULT_MODE, GAME_MODES, LONG_PRESS_MS
from monstersweeper.persistence import FirestoreStore, InMemoryStore
from monstersweeper.service import DEFAULT_EFFECT_TTL_MS, RoomService

load_dotenv(dotenv_path=Path('.env.local'))

API_BASE = "/api/monstersweeper"


def _flag(name: str) -> bool:
    return os.getenv(name, "0").lower() in ("1", "true", "yes")


def choose_store():
    if _flag("USE_INMEMORY"):
        return InMemoryStore()
    try:
        return FirestoreStore()
    except Exception:
        # Fallback to in-memory if firestore client not available
        logging.getLogger("uvicorn.error").warning(
            "[monstersweeper] Firestore unavailable, falling back to InMemoryStore", exc_info=True
        )
        return InMemoryStore()


class PlayerBody(BaseModel):
    player_name: str = Field(..., min_length=1, max_length=32)


class CreateBody(PlayerBody):
    mode: str = DEFAULT_MODE


class ModeBody(BaseModel):
    mode: str


class CellBody(PlayerBody):
    row: int = Field(..., ge=0)
    col: int = Field(..., ge=0)


class MarkBody(CellBody):
    value: Optional[int] = Field(None, ge=0, le=9)


def _run(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except KeyError:
        raise HTTPException(status_code=404, detail="room not found")
    except ValueError as e:
        if str(e) == "not_host":
            raise HTTPException(status_code=403, detail="only the host can do that")
        raise HTTPException(status_code=400, detail=str(e))


def create_app(store=None, service: Optional[RoomService] = None) -> FastAPI:
    app = FastAPI(title="Monster Sweeper Service", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    if service is None:
        ttl = int(os.getenv("EFFECT_TTL_MS", str(DEFAULT_EFFECT_TTL_MS)))
        service = RoomService(store or choose_store(), effect_ttl_ms=ttl)
    app.state.service = service

    @app.on_event("startup")
    async def _log_store():
        klass = app.state.service.store.__class__.__name__
        emulator = os.getenv("FIRESTORE_EMULATOR_HOST")
        project = os.getenv("GOOGLE_CLOUD_PROJECT")
        logging.getLogger("uvicorn.error").info(
            f"[monstersweeper] Store={klass} USE_INMEMORY={int(_flag('USE_INMEMORY'))} "
            f"FIRESTORE_EMULATOR_HOST={emulator or '-'} GOOGLE_CLOUD_PROJECT={project or '-'}"
        )

    def _view(room_id: str):
        return _run(app.state.service.view, room_id) | {"room_id": room_id.upper()}

    def _action(room_id: str, result):
        return {
            "committed": result.committed,
            "effects": result.effects,
            "room": _view(room_id),
        }

    @app.get(f"{API_BASE}/modes")
    def list_modes():
        return {
            "default": DEFAULT_MODE,
            "longPressMs": LONG_PRESS_MS,
            "modes": {mode_id: mode.to_dict() for mode_id, mode in GAME_MODES.items()},
        }

    @app.post(f"{API_BASE}/rooms")
    def create_room(body: CreateBody):
        room_id, _room = _run(app.state.service.create_room, body.player_name, body.mode)
        return _view(room_id)

    @app.get(f"{API_BASE}/rooms/{{room_id}}")
    def get_room(room_id: str):
        return _view(room_id)

    @app.post(f"{API_BASE}/rooms/{{room_id}}/join")
    def join_room(room_id: str, body: PlayerBody):
        _run(app.state.service.join_room, room_id, body.player_name)
        return _view(room_id)

    @app.post(f"{API_BASE}/rooms/{{room_id}}/leave")
    def leave_room(room_id: str, body: PlayerBody):
        _run(app.state.service.leave_room, room_id, body.player_name)
        return _view(room_id)

    @app.post(f"{API_BASE}/rooms/{{room_id}}/start")
    def start_game(room_id: str, body: PlayerBody):
        _run(app.state.service.start_game, room_id, body.player_name)
        return _view(room_id)

    @app.post(f"{API_BASE}/rooms/{{room_id}}/reset")
    def reset_game(room_id: str):
        _run(app.state.service.reset_game, room_id)
        return _view(room_id)

    @app.post(f"{API_BASE}/rooms/{{room_id}}/mode")
    def change_mode(room_id: str, body: ModeBody):
        _run(app.state.service.change_mode, room_id, body.mode)
        return _view(room_id)

    @app.post(f"{API_BASE}/rooms/{{room_id}}/tick")
    def tick(room_id: str):
        return _action(room_id, _run(app.state.service.tick, room_id))

    @app.post(f"{API_BASE}/rooms/{{room_id}}/click")
    def click(room_id: str, body: CellBody):
        result = _run(app.state.service.click, room_id, body.player_name, body.row, body.col)
        return _action(room_id, result)

    @app.post(f"{API_BASE}/rooms/{{room_id}}/mark")
    def mark(room_id: str, body: MarkBody):
        if body.value is None:
            result = _run(app.state.service.cycle_mark, room_id, body.player_name, body.row, body.col)
        else:
            result = _run(app.state.service.set_mark, room_id, body.player_name, body.row, body.col, body.value)
        return _action(room_id, result)

    @app.post(f"{API_BASE}/rooms/{{room_id}}/mark/clear")
    def clear_mark(room_id: str, body: CellBody):
        return _action(room_id, _run(app.state.service.clear_mark, room_id, body.row, body.col))

    @app.post(f"{API_BASE}/rooms/{{room_id}}/pin")
    def pin(room_id: str, body: CellBody):
        result = _run(app.state.service.toggle_pin, room_id, body.player_name, body.row, body.col)
        return _action(room_id, result)

    @app.websocket(f"{API_BASE}/rooms/{{room_id}}/ws")
    async def room_updates(websocket: WebSocket, room_id: str):
        await websocket.accept()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def _push(view):
            loop.call_soon_threadsafe(queue.put_nowait, view)

        async def _until_disconnect():
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return

        try:
            unsubscribe = app.state.service.subscribe(room_id, _push)
        except ValueError as e:
            await websocket.close(code=4400, reason=str(e))
            return
        closed = asyncio.ensure_future(_until_disconnect())
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _pending = await asyncio.wait({getter, closed}, return_when=asyncio.FIRST_COMPLETED)
                if closed in done:
                    getter.cancel()
                    break
                view = getter.result()
                if view is None:
                    await websocket.close(code=4404, reason="room not found")
                    break
                await websocket.send_json(view | {"room_id": room_id.upper()})
        finally:
            closed.cancel()
            unsubscribe()

    # Static frontend
    frontend_dir = Path(__file__).resolve().parent.parent / "frontend"
    if frontend_dir.exists():
        app.mount("/", StaticFiles(directory=str(frontend_dir), html=True), name="frontend")

    return app


app = create_app()
