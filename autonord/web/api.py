# FILE: web/api.py
# PURPOSE: Read-only FastAPI status page mirroring the terminal dashboard.

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from threading import Thread
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse

from ..core.data_models import SharedRate, StatusBoard

logger = logging.getLogger(__name__)

BROADCAST_INTERVAL = 2.0

HTML_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>AutoNord</title>
    <style>
        body { background-color: #111827; color: #e5e7eb; font-family: monospace; padding: 2em; }
        td { padding: 0.2em 1em 0.2em 0; }
        .label { color: #60a5fa; }
    </style>
</head>
<body>
    <h1>AutoNord</h1>
    <table>
        <tr><td class="label">Interface</td><td id="interface">-</td></tr>
        <tr><td class="label">Status</td><td id="state">-</td></tr>
        <tr><td class="label">IP / Hostname</td><td id="ip">-</td></tr>
        <tr><td class="label">City / Country</td><td id="location">-</td></tr>
        <tr><td class="label">Download / Upload</td><td id="rate">-</td></tr>
        <tr><td class="label">1337-Roulette</td><td id="roulette">-</td></tr>
    </table>
    <script>
        const ws = new WebSocket(`ws://${location.host}/ws`);
        const show = (id, text) => document.getElementById(id).textContent = text;
        ws.onmessage = (event) => {
            const data = JSON.parse(event.data);
            const vpn = data.vpn || {};
            show('interface', data.interface);
            show('state', data.vpn_error || vpn.state || 'N/A');
            show('ip', `${vpn.ip || 'N/A'} / ${vpn.hostname || 'N/A'}`);
            show('location', `${vpn.city || 'N/A'} / ${vpn.country || 'N/A'}`);
            show('rate', data.rate
                ? `${data.rate.download_mbps.toFixed(2)} / ${data.rate.upload_mbps.toFixed(2)} Mb/s`
                : `N/A${data.rate_error ? ' (' + data.rate_error + ')' : ''}`);
            show('roulette', data.roulette ? 'ON' : 'OFF');
        };
    </script>
</body>
</html>
"""


class ConnectionManager:
    def __init__(self) -> None:
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: str) -> None:
        for connection in self.active_connections[:]:
            try:
                await connection.send_text(message)
            except Exception:
                self.disconnect(connection)


def create_app(board: StatusBoard, shared_rate: SharedRate) -> FastAPI:
    manager = ConnectionManager()

    async def broadcast_data() -> None:
        while True:
            await manager.broadcast(json.dumps(board.snapshot(shared_rate)))
            await asyncio.sleep(BROADCAST_INTERVAL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(broadcast_data())
        yield
        task.cancel()

    app = FastAPI(title="AutoNord", lifespan=lifespan)
    app.state.manager = manager

    @app.get("/", response_class=HTMLResponse)
    async def get_root():
        return HTMLResponse(content=HTML_PAGE)

    @app.get("/api/status", response_class=JSONResponse)
    async def api_status():
        return board.snapshot(shared_rate)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await manager.connect(websocket)
        try:
            await websocket.send_text(json.dumps(board.snapshot(shared_rate)))
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app


class WebServer:
    """Runs uvicorn on a daemon thread so the terminal loop stays in front."""

    def __init__(self, app: FastAPI, host: str = "127.0.0.1", port: int = 8000) -> None:
        config = uvicorn.Config(app, host=host, port=port, log_level="warning")
        self.server = uvicorn.Server(config)
        self.host = host
        self.port = port
        self._thread: Optional[Thread] = None

    def start(self) -> None:
        self._thread = Thread(target=self.server.run, name="web-dashboard", daemon=True)
        self._thread.start()
        logger.info("Web dashboard on http://%s:%d", self.host, self.port)

    def stop(self, timeout: float = 3.0) -> None:
        self.server.should_exit = True
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout)
