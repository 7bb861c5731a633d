"""
FastAPI Application — chat proxy, tutor sessions and the voice WebSocket.

Provides:
- POST /api/chat: thin proxy to the LLM provider ({message} → {response})
- REST API for tutor sessions (typed turns, clear, language, volume)
- WebSocket bridge that drives the browser's speech engines
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config.settings import get_settings
from api.chat_proxy import ChatProxy, ChatProxyError
from api.runtime import SessionRegistry, TutorRuntime
from models.schemas import Language

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

registry = SessionRegistry()
chat_proxy = ChatProxy()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("nukhba_tutor_started", model=settings.llm.model,
                daily_limit=settings.session.daily_limit)
    yield
    await registry.close()
    await chat_proxy.close()
    logger.info("nukhba_tutor_stopped")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="Nukhba AI Tutor API",
    description="Voice and chat exam-preparation tutor",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class CreateSessionRequest(BaseModel):
    language: Language = Language.ENGLISH
    is_premium: bool = False
    auto_play: Optional[bool] = None
    volume: Optional[int] = Field(default=None, ge=0, le=100)


class TextTurnRequest(BaseModel):
    text: str


class LanguageRequest(BaseModel):
    language: Language


class VolumeRequest(BaseModel):
    volume: int = Field(ge=0, le=100)


def _runtime_or_404(session_id: str) -> TutorRuntime:
    runtime = registry.get(session_id)
    if runtime is None:
        raise HTTPException(404, "Session not found")
    return runtime


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "sessions": len(registry),
    }


# ══════════════════════════════════════════════════════════════
#  CHAT PROXY
# ══════════════════════════════════════════════════════════════

@app.post("/api/chat")
async def chat(request: Request):
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid request. Body must be JSON."}, status_code=400)

    message = body.get("message") if isinstance(body, dict) else None
    if not message or not isinstance(message, str):
        return JSONResponse(
            {"error": "Invalid request. 'message' field is required and must be a string."},
            status_code=400,
        )

    try:
        answer = await chat_proxy.complete(message)
    except ChatProxyError as e:
        return JSONResponse({"error": e.message}, status_code=e.status)
    except Exception as e:
        logger.error("chat_proxy_failed", error=str(e))
        return JSONResponse(
            {"error": "Internal server error. Please try again later."},
            status_code=500,
        )

    return JSONResponse({"response": answer}, status_code=200)


@app.get("/api/chat")
async def chat_method_not_allowed():
    return JSONResponse(
        {"error": "Method not allowed. Use POST to send a message."},
        status_code=405,
    )


# ══════════════════════════════════════════════════════════════
#  SESSIONS
# ══════════════════════════════════════════════════════════════

@app.post("/api/v1/sessions")
async def create_session(req: CreateSessionRequest):
    runtime = registry.create(
        language=req.language,
        is_premium=req.is_premium,
        auto_play=req.auto_play,
        volume=req.volume,
    )
    return runtime.session.to_dict()


@app.get("/api/v1/sessions/{session_id}")
async def get_session(session_id: str):
    runtime = _runtime_or_404(session_id)
    data = runtime.session.to_dict()
    data["state"] = runtime.orchestrator.state.value
    return data


@app.delete("/api/v1/sessions/{session_id}")
async def delete_session(session_id: str):
    _runtime_or_404(session_id)
    await registry.remove(session_id)
    return {"deleted": session_id}


@app.post("/api/v1/sessions/{session_id}/messages")
async def send_message(session_id: str, req: TextTurnRequest):
    runtime = _runtime_or_404(session_id)
    # without a connected browser there is nothing to play the answer on
    speak = None if runtime.link.connected else False
    outcome = await runtime.orchestrator.send_text(req.text, speak=speak)
    payload = {
        "outcome": outcome.model_dump(mode="json"),
        "session": runtime.session.to_dict(),
    }
    if outcome.rejected:
        status = 429 if outcome.notice and outcome.notice.kind == "RateLimitExceeded" else 409
        return JSONResponse(payload, status_code=status)
    return payload


@app.post("/api/v1/sessions/{session_id}/clear")
async def clear_session(session_id: str):
    runtime = _runtime_or_404(session_id)
    await runtime.orchestrator.cancel()
    runtime.session.reset_session()
    return runtime.session.to_dict()


@app.put("/api/v1/sessions/{session_id}/language")
async def set_language(session_id: str, req: LanguageRequest):
    runtime = _runtime_or_404(session_id)
    runtime.orchestrator.set_language(req.language)
    return runtime.session.to_dict()


@app.put("/api/v1/sessions/{session_id}/volume")
async def set_volume(session_id: str, req: VolumeRequest):
    runtime = _runtime_or_404(session_id)
    runtime.orchestrator.set_volume(req.volume)
    return {"volume": runtime.session.volume}


@app.get("/api/v1/sessions/{session_id}/latency")
async def session_latency(session_id: str):
    runtime = _runtime_or_404(session_id)
    return runtime.orchestrator.latency.to_dict()


# ══════════════════════════════════════════════════════════════
#  VOICE WEBSOCKET
# ══════════════════════════════════════════════════════════════

async def _drain_outbox(websocket: WebSocket, runtime: TutorRuntime):
    while True:
        command = await runtime.link.outbox.get()
        await websocket.send_json(command)


@app.websocket("/ws/voice/{session_id}")
async def voice_socket(websocket: WebSocket, session_id: str):
    """
    Browser → server: hello, listen, stop, cancel, text, capture.*, output.*
    Server → browser: capture.start, capture.stop, speak, cancel_speech,
    state, outcome, error
    """
    runtime = registry.get(session_id)
    if runtime is None:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    writer = asyncio.create_task(_drain_outbox(websocket, runtime))
    runtime.attach()
    logger.info("voice_socket_connected", session_id=session_id)

    try:
        while True:
            message: dict[str, Any] = await websocket.receive_json()
            kind = str(message.get("type", ""))
            orchestrator = runtime.orchestrator

            if kind == "hello":
                runtime.attach(
                    capture_supported=bool(message.get("capture", True)),
                    synthesis_supported=bool(message.get("synthesis", True)),
                )
            elif kind == "listen":
                runtime.spawn(orchestrator.start_listening())
            elif kind == "stop":
                await orchestrator.finish_listening()
            elif kind == "cancel":
                await orchestrator.cancel()
            elif kind == "text":
                runtime.spawn(orchestrator.send_text(str(message.get("text", ""))))
            elif kind.startswith(("capture.", "output.")):
                runtime.feed(message)
            else:
                await runtime.link.send({"type": "error", "error": f"Unknown message type '{kind}'"})
    except WebSocketDisconnect:
        logger.info("voice_socket_disconnected", session_id=session_id)
    finally:
        await runtime.orchestrator.cancel()
        runtime.detach()
        writer.cancel()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
