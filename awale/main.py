from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from typing import Optional
import asyncio
import logging
from pathlib import Path
from datetime import datetime
import uuid

from awale.config import Settings
from awale.services.coordinator import GameServer

logger = logging.getLogger(__name__)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging(settings: Settings) -> Optional[Path]:
    handlers = [logging.StreamHandler()]
    log_filename = None
    if settings.LOG_DIR:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_filename = log_dir / f"server_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        handlers.append(logging.FileHandler(log_filename))

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=handlers
    )
    return log_filename

# ============================================================================
# CONNECTION
# ============================================================================

class ClientConnection:
    """
    One WebSocket client. Game logic calls send() synchronously; frames are
    queued and written in order by pump().
    """

    def __init__(self, websocket: WebSocket):
        self.conn_id = f"conn_{uuid.uuid4().hex[:8]}"
        self.websocket = websocket
        self.outbox: asyncio.Queue = asyncio.Queue()

    def send(self, message: dict) -> None:
        self.outbox.put_nowait(message)

    async def pump(self):
        while True:
            message = await self.outbox.get()
            try:
                await self.websocket.send_json(message)
                logger.debug(f"Sent to {self.conn_id}: {message['type']}")
            except Exception as e:
                logger.warning(f"Error sending to {self.conn_id}: {e}")
                return


def origin_allowed(origin: Optional[str], allowed: Optional[str]) -> bool:
    """Localhost and GitHub Pages origins are always accepted"""
    if not allowed or not origin:
        return True
    if origin == allowed:
        return True
    if any(host in origin for host in ("localhost:", "127.0.0.1:", "::1:")):
        return True
    return ".github.io" in origin

# ============================================================================
# FASTAPI APP SETUP
# ============================================================================

def create_app(settings: Optional[Settings] = None, server: Optional[GameServer] = None) -> FastAPI:
    settings = settings or Settings()
    log_filename = configure_logging(settings)
    server = server or GameServer(settings)

    app = FastAPI(title="Awale Server")
    app.state.server = server

    @app.on_event("startup")
    async def startup_event():
        """Start background sweeps"""
        await server.start_sweeps()
        logger.info("=" * 60)
        logger.info("AWALE SERVER STARTED")
        logger.info("=" * 60)
        if log_filename:
            logger.info(f"Log file: {log_filename}")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Clean up background tasks"""
        server.stop_sweeps()
        logger.info("Server shutting down - cleaned up background tasks")

    # ========================================================================
    # HTTP ENDPOINTS
    # ========================================================================

    @app.get("/health")
    async def health():
        return {"status": "ok", "games": len(server.games.games)}

    @app.get("/status")
    async def status():
        """Get server status"""
        return server.get_stats()

    @app.get("/games/{game_id}")
    async def get_game(game_id: str):
        game = server.games.get_game(game_id)
        if not game:
            logger.warning(f"Game request for nonexistent game: {game_id}")
            return {"error": "Game not found"}
        return {"success": True, "game": game.to_dict()}

    # ========================================================================
    # WEBSOCKET ENDPOINT
    # ========================================================================

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        origin = websocket.headers.get("origin")
        if not origin_allowed(origin, settings.ALLOWED_ORIGIN):
            logger.warning(f"Origin not allowed: {origin}")
            await websocket.close(code=4001, reason="origin not allowed")
            return

        conn = ClientConnection(websocket)
        writer = asyncio.create_task(conn.pump())
        logger.info(f"Client connected: {conn.conn_id}")

        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    logger.info(f"Client disconnected normally: {conn.conn_id}")
                    break
                # Binary frames go through the same decoder and get BAD_JSON if unreadable
                data = frame.get("text")
                if data is None:
                    data = frame.get("bytes")
                server.handle_message(conn, data)
        except WebSocketDisconnect:
            logger.info(f"Client disconnected normally: {conn.conn_id}")
        except Exception as e:
            logger.error(f"Error with client {conn.conn_id}: {e}", exc_info=True)
        finally:
            server.handle_disconnect(conn)
            writer.cancel()

    return app


app = create_app()


def main():
    import uvicorn
    settings = Settings()
    logger.info(f"Starting server on http://{settings.HOST}:{settings.PORT}")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
