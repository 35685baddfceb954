"""
Route registration for the hotline API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire the call gateway to the WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import FastAPI, HTTPException, Response, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from feedback.lessons import LessonStore, render_lessons_markdown
from observability.logger import log_event
from session.gateway import CallGateway, Outbound
from storage.transcripts import TranscriptStore


class LessonBody(BaseModel):
    lesson: str


def _lessons_payload(store: LessonStore, lessons: list[str] | None = None) -> dict[str, Any]:
    return {
        "lessons": store.load() if lessons is None else lessons,
        "call_count": store.call_count(),
        "cap": store.cap,
    }


def _require_text(body: LessonBody) -> str:
    text = body.lesson.strip()
    if not text:
        raise HTTPException(status_code=422, detail="lesson must not be empty")
    return text


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok", "live_mode": app.state.config.live_mode}

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    @app.get("/lessons")
    async def list_lessons() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        return _lessons_payload(app.state.lesson_store)

    @app.post("/lessons")
    async def add_lesson(body: LessonBody) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        store: LessonStore = app.state.lesson_store
        return _lessons_payload(store, store.add(_require_text(body)))

    @app.put("/lessons/{index}")
    async def edit_lesson(index: int, body: LessonBody) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        store: LessonStore = app.state.lesson_store
        try:
            lessons = store.update(index, _require_text(body))
        except IndexError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _lessons_payload(store, lessons)

    @app.delete("/lessons/{index}")
    async def delete_lesson(index: int) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        store: LessonStore = app.state.lesson_store
        try:
            lessons = store.remove(index)
        except IndexError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _lessons_payload(store, lessons)

    @app.delete("/lessons")
    async def clear_lessons() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        store: LessonStore = app.state.lesson_store
        store.clear()
        return _lessons_payload(store, [])

    @app.get("/lessons.md")
    async def lessons_markdown() -> Response: # pyright: ignore[reportUnusedFunction]
        markdown = render_lessons_markdown(app.state.lesson_store.load())
        return Response(content=markdown, media_type="text/markdown")

    # ------------------------------------------------------------------
    # Call records
    # ------------------------------------------------------------------

    @app.get("/calls")
    async def list_calls(unevaluated: bool = False) -> list[dict[str, Any]]: # pyright: ignore[reportUnusedFunction]
        store: TranscriptStore = app.state.transcript_store
        records = store.list_unevaluated() if unevaluated else store.list_all()
        return [record.to_dict() for record in records]

    @app.get("/calls/stats")
    async def call_stats() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        return app.state.transcript_store.stats().to_dict()

    @app.get("/calls/{call_id}")
    async def get_call(call_id: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        try:
            record = app.state.transcript_store.get(call_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if record is None:
            raise HTTPException(status_code=404, detail="call not found")
        return record.to_dict()

    @app.delete("/calls/{call_id}")
    async def delete_call(call_id: str) -> dict[str, bool]: # pyright: ignore[reportUnusedFunction]
        try:
            deleted = app.state.transcript_store.delete(call_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not deleted:
            raise HTTPException(status_code=404, detail="call not found")
        return {"deleted": True}

    # ------------------------------------------------------------------
    # Live call relay
    # ------------------------------------------------------------------

    @app.websocket("/ws/call")
    async def call_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        gateway = CallGateway(
            config=app.state.config,
            lesson_store=app.state.lesson_store,
            transcript_store=app.state.transcript_store,
            critic=app.state.critic,
            live_connect=app.state.live_connect,
        )
        sender = asyncio.create_task(_drain_outbound(ws, gateway))

        try:
            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(code=msg.get("code", 1000))

                if msg.get("text") is not None:
                    await gateway.on_json_message(msg["text"])

                elif msg.get("bytes") is not None:
                    await gateway.on_binary_message(msg["bytes"])

        except WebSocketDisconnect:
            await gateway.on_ws_disconnect(reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "level": "ERROR",
                "connection_id": gateway.connection_id,
                "call_id": gateway.controller.current_call.call_id
                if gateway.controller.current_call else None,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            await gateway.on_ws_disconnect(reason="server_error")

        finally:
            sender.cancel()


async def _drain_outbound(ws: WebSocket, gateway: CallGateway) -> None:
    queue: asyncio.Queue[Outbound] = gateway.outbound
    try:
        while True:
            item = await queue.get()
            if isinstance(item, bytes):
                await ws.send_bytes(item)
            else:
                await ws.send_text(json.dumps(item))
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # pylint: disable=broad-exception-caught
        log_event({
            "event_type": "WS_SEND_FAILED",
            "level": "WARNING",
            "connection_id": gateway.connection_id,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
