"""
FastAPI server for the dashboard voice assistant.

Endpoints:
- GET /health: Health check
- GET /metrics: JSON metrics
- WS /ws: Dashboard chat WebSocket (one turn controller per connection)
"""

import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Any
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from src.voice.config import get_config, init_config, ConfigError


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


logger = structlog.get_logger(__name__)


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    total_connections: int = 0
    active_connections: int = 0
    total_turns: int = 0
    barge_ins: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_connections": self.total_connections,
            "active_connections": self.active_connections,
            "total_turns": self.total_turns,
            "barge_ins": self.barge_ins,
            "errors": self.errors,
        }


metrics = ServerMetrics()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting dashboard voice server...")

    try:
        config = init_config()
        configure_logging(config.log_level)
        logger.info(
            "Server ready",
            port=config.port,
            capture_provider=config.capture_provider,
            tts_primary=config.tts_primary,
            assistant_provider=config.assistant_provider,
        )
    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)

    yield

    logger.info("Shutting down server...")


app = FastAPI(
    title="Dashboard Voice Assistant",
    description="Turn-taking voice layer for the dashboard chat assistant",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "active_connections": metrics.active_connections,
        }
    )


@app.get("/metrics")
async def get_metrics() -> JSONResponse:
    """Metrics endpoint."""
    return JSONResponse(content=metrics.to_dict())


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Dashboard chat WebSocket endpoint.

    Text frames are protocol messages; binary frames are microphone audio.
    """
    await websocket.accept()

    metrics.total_connections += 1
    metrics.active_connections += 1

    # Import here to keep startup light
    from src.voice.session import ChatSession

    async def send_message(message: str) -> None:
        await websocket.send_text(message)

    session = ChatSession(send_message)
    logger.info(
        "WebSocket connected",
        session_id=session.session_id,
        active_connections=metrics.active_connections,
    )

    try:
        await session.start()

        while True:
            try:
                frame = await websocket.receive()
                if frame.get("type") == "websocket.disconnect":
                    logger.info("WebSocket disconnected", session_id=session.session_id)
                    break
                if frame.get("bytes") is not None:
                    await session.handle_audio(frame["bytes"])
                elif frame.get("text") is not None:
                    await session.handle_message(frame["text"])
            except WebSocketDisconnect:
                logger.info("WebSocket disconnected", session_id=session.session_id)
                break
            except Exception as e:
                logger.error(
                    "Error handling WebSocket message",
                    session_id=session.session_id,
                    error=str(e),
                )
                metrics.errors += 1
                continue

    except Exception as e:
        logger.error(
            "WebSocket handler error",
            session_id=session.session_id,
            error=str(e),
        )
        metrics.errors += 1

    finally:
        if session.controller is not None:
            metrics.total_turns += session.controller.metrics.turns
            metrics.barge_ins += session.controller.metrics.barge_ins
        try:
            await session.stop()
        except Exception as e:
            logger.error("Error stopping chat session", error=str(e))

        metrics.active_connections -= 1

        logger.info(
            "Session ended",
            session_id=session.session_id,
            active_connections=metrics.active_connections,
        )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )
    metrics.errors += 1

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    config = get_config()
    configure_logging(config.log_level)

    logger.info("Starting server", port=config.port)

    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
