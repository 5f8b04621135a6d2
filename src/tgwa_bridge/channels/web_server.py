"""
Control Server

HTTP control surface for the bridge on a single port:
- /ping, /healthz        - liveness
- /wa/...                - WhatsApp status, QR, groups, radar, relay
- /tg/...                - Telegram status and send
- /logs, /logs/tail      - file log

State-changing WhatsApp routes require the admin token, passed either as
?token= or as "token" in the JSON body.
"""

import html
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel
import uvicorn

from ..core.context import BridgeContext
from ..logging_setup import read_log, read_log_tail
from .telegram import TelegramSource
from .whatsapp.auth_state import list_auth_files, reset_auth_dir
from .whatsapp.groups import GroupResolver
from .whatsapp.lifecycle import ConnectionManager
from .whatsapp.notifier import ServiceNotifier
from .whatsapp.qr import render_qr_ascii, render_qr_svg
from .whatsapp.relay import RelayEngine

logger = logging.getLogger(__name__)


# Response models
class GroupResponse(BaseModel):
    id: str
    name: str


class ActivityResponse(BaseModel):
    text: str
    counterparty: Optional[str] = None
    ts: int


class SendResponse(BaseModel):
    status: str
    text: str


class RadarResponse(BaseModel):
    status: str = "ok"
    radarActive: Optional[bool] = None
    radarTestMode: Optional[bool] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _json_body(request: Request) -> Dict[str, Any]:
    """Request body as a dict; empty for missing or non-JSON bodies."""
    try:
        body = await request.json()
    except Exception:
        return {}
    return body if isinstance(body, dict) else {}


class ControlServer:
    """
    FastAPI control surface.

    Route structure:
    - GET  /                      - Status page
    - GET  /wa/status             - Connection status snapshot
    - GET  /wa/qr[-img|-ascii]    - Pending pairing QR
    - POST /wa/reset, /wa/relogin - Wipe auth and start (admin)
    - POST /wa/radar/{on|off}     - Radar gate (admin)
    - POST /wa/send               - Relay arbitrary text
    """

    def __init__(
        self,
        ctx: BridgeContext,
        manager: ConnectionManager,
        resolver: GroupResolver,
        relay: RelayEngine,
        notifier: ServiceNotifier,
        telegram: Optional[TelegramSource] = None,
        auth_dir: Union[str, Path] = "/tmp/auth_info_baileys",
        admin_token: Optional[str] = "admin-token",
        log_file: Optional[Union[str, Path]] = None,
        host: str = "0.0.0.0",
        port: int = 3000,
    ):
        self.ctx = ctx
        self.manager = manager
        self.resolver = resolver
        self.relay = relay
        self.notifier = notifier
        self.telegram = telegram
        self.auth_dir = Path(auth_dir)
        self.admin_token = admin_token
        self.log_file = log_file
        self.host = host
        self.port = port
        self.is_active = False
        self._server: Optional[uvicorn.Server] = None

        self.app = FastAPI(
            title="TG -> WA Bridge",
            description="Telegram to WhatsApp relay control surface",
        )
        self._setup_routes()

    async def _authorized(self, request: Request) -> bool:
        if not self.admin_token:
            return True
        token = request.query_params.get("token")
        if token is None:
            token = (await _json_body(request)).get("token")
        return token == self.admin_token

    async def _text_param(self, request: Request) -> Optional[str]:
        text = (await _json_body(request)).get("text") or request.query_params.get("text")
        return str(text) if text else None

    def _setup_routes(self):
        """Setup all routes"""

        # =====================================================================
        # BASIC
        # =====================================================================

        @self.app.get("/ping", response_class=PlainTextResponse)
        async def ping():
            return "pong"

        @self.app.get("/healthz", response_class=PlainTextResponse)
        async def healthz():
            return "ok"

        @self.app.get("/", response_class=HTMLResponse)
        async def index():
            return self._render_index()

        # =====================================================================
        # WHATSAPP STATUS / AUTH
        # =====================================================================

        @self.app.get("/wa/status")
        async def wa_status():
            return self.ctx.status_snapshot()

        @self.app.get("/wa/auth-status")
        async def wa_auth_status():
            return list_auth_files(self.auth_dir)

        async def reset_and_start(request: Request, background: BackgroundTasks, message: str):
            if not await self._authorized(request):
                return _error(403, "forbidden")
            try:
                reset_auth_dir(self.auth_dir)
            except OSError as e:
                logger.warning(f"Failed to wipe auth dir: {e}")
            restarted = not self.manager.starting
            if restarted:
                background.add_task(self.manager.request_start, True)
            else:
                logger.warning(
                    f"{message}: auth wiped but a start is already in progress "
                    f"({self.ctx.status.value}) - no restart"
                )
            return {
                "status": "ok",
                "message": message,
                "restarted": restarted,
                "whatsapp": self.ctx.status.value,
            }

        @self.app.post("/wa/reset")
        async def wa_reset(request: Request, background: BackgroundTasks):
            return await reset_and_start(request, background, "reset requested")

        @self.app.post("/wa/relogin")
        async def wa_relogin(request: Request, background: BackgroundTasks):
            return await reset_and_start(request, background, "relogin requested")

        @self.app.post("/wa/start")
        async def wa_start(request: Request, background: BackgroundTasks):
            if not await self._authorized(request):
                return _error(403, "forbidden")
            background.add_task(self.manager.request_start, False)
            return {"status": "ok", "message": "start requested"}

        # =====================================================================
        # QR
        # =====================================================================

        @self.app.get("/wa/qr", response_class=HTMLResponse)
        async def wa_qr():
            if not self.ctx.last_qr:
                return PlainTextResponse("QR not generated", status_code=404)
            svg = render_qr_svg(self.ctx.last_qr)
            return HTMLResponse(
                '<html><body style="display:flex;align-items:center;justify-content:center;'
                f'height:100vh;background:#071024"><div style="background:#fff;padding:16px">{svg}'
                "</div></body></html>"
            )

        @self.app.get("/wa/qr-img")
        async def wa_qr_img():
            if not self.ctx.last_qr:
                return PlainTextResponse("QR not generated", status_code=404)
            return Response(
                content=render_qr_svg(self.ctx.last_qr),
                media_type="image/svg+xml",
                headers={"Cache-Control": "no-store"},
            )

        @self.app.get("/wa/qr-ascii", response_class=PlainTextResponse)
        async def wa_qr_ascii():
            if not self.ctx.last_qr:
                return PlainTextResponse("QR not generated", status_code=404)
            return render_qr_ascii(self.ctx.last_qr)

        # =====================================================================
        # GROUPS / RELAY
        # =====================================================================

        @self.app.get("/wa/groups", response_model=List[GroupResponse])
        async def wa_groups():
            try:
                groups = await self.resolver.list_groups()
            except Exception as e:
                logger.error(f"Failed to list groups: {e}")
                return _error(500, str(e))
            if groups is None:
                return _error(500, "whatsapp not connected")
            return [g.to_dict() for g in groups]

        @self.app.post("/wa/announce-group")
        async def wa_announce_group(request: Request):
            if not await self._authorized(request):
                return _error(403, "forbidden")
            sent = await self.notifier.reannounce()
            return {"status": "ok", "sent": sent, "waGroup": self.ctx.status_snapshot()["waGroup"]}

        @self.app.post("/wa/send", response_model=SendResponse)
        async def wa_send(request: Request):
            text = await self._text_param(request)
            if not text:
                return _error(400, "text required")
            if not await self.relay.forward(text):
                return _error(500, "send failed")
            return {"status": "ok", "text": text}

        @self.app.get("/wa/recent-forwarded", response_model=List[ActivityResponse])
        async def wa_recent_forwarded():
            return [e.to_dict() for e in self.ctx.forwarded.newest_first()]

        @self.app.get("/wa/recent-messages", response_model=List[ActivityResponse])
        async def wa_recent_messages():
            return [e.to_dict() for e in self.ctx.received.newest_first()]

        # =====================================================================
        # RADAR
        # =====================================================================

        @self.app.post("/wa/radar/{mode}", response_model=RadarResponse, response_model_exclude_none=True)
        async def wa_radar(mode: str, request: Request):
            if mode not in ("on", "off"):
                return _error(404, "unknown mode")
            if not await self._authorized(request):
                return _error(403, "forbidden")
            enabled = mode == "on"
            await self.notifier.set_radar(enabled)
            return {"status": "ok", "radarActive": enabled}

        @self.app.get("/wa/radar/status")
        async def wa_radar_status():
            return {"radarActive": self.ctx.radar_active, "radarTestMode": self.ctx.radar_test_mode}

        @self.app.post("/wa/radar-test/{mode}", response_model=RadarResponse, response_model_exclude_none=True)
        async def wa_radar_test(mode: str, request: Request):
            if mode not in ("on", "off"):
                return _error(404, "unknown mode")
            if not await self._authorized(request):
                return _error(403, "forbidden")
            enabled = mode == "on"
            await self.notifier.set_radar_test(enabled)
            return {"status": "ok", "radarTestMode": enabled}

        # =====================================================================
        # TELEGRAM
        # =====================================================================

        @self.app.get("/tg/status")
        async def tg_status():
            if self.telegram is None:
                return {"telegram": "disconnected", "bot": None, "source": None}
            return self.telegram.status()

        @self.app.post("/tg/send", response_model=SendResponse)
        async def tg_send(request: Request):
            text = await self._text_param(request)
            if not text:
                return _error(400, "text required")
            if self.telegram is None or not self.telegram.is_active:
                return _error(500, "telegram not connected")
            if not await self.telegram.send_notification(text):
                return _error(500, "send failed")
            return {"status": "ok", "text": text}

        # =====================================================================
        # LOGS
        # =====================================================================

        @self.app.get("/logs", response_class=PlainTextResponse)
        async def logs():
            return read_log(self.log_file)

        @self.app.get("/logs/tail", response_class=PlainTextResponse)
        async def logs_tail(lines: int = 200):
            return read_log_tail(self.log_file, lines)

    def _render_index(self) -> str:
        status = self.ctx.status_snapshot()
        group = status["waGroup"] or {}
        qr_html = (
            f'<img src="/wa/qr-img" style="max-width:320px;background:#fff"/>'
            if status["qrPending"]
            else '<div style="color:#9fb0c8">QR not generated</div>'
        )
        rows = "".join(
            f"<tr><td>{html.escape(str(k))}</td><td>{html.escape(str(v))}</td></tr>"
            for k, v in (
                ("WhatsApp", status["whatsapp"]),
                ("Group", group.get("name") or group.get("id") or "-"),
                ("Radar", "ON" if status["radarActive"] else "OFF"),
                ("Test mode", "ON" if status["radarTestMode"] else "OFF"),
                ("Conflicts", status["conflictCount"]),
            )
        )
        return f"""<!doctype html>
<html>
<head><meta charset="utf-8"/><title>TG -> WA Bridge</title></head>
<body style="font-family:sans-serif;background:#071024;color:#e6eef8;padding:24px">
  <h1>TG -> WA Bridge</h1>
  <table>{rows}</table>
  <h2>QR</h2>
  {qr_html}
  <p><a style="color:#7cc4ff" href="/logs/tail?lines=200">Logs</a></p>
</body>
</html>"""

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    async def start(self):
        """Serve until stopped"""
        self.is_active = True
        logger.info(f"Control server started on http://{self.host}:{self.port}")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info"
        )
        self._server = uvicorn.Server(config)
        await self._server.serve()

    async def stop(self):
        """Ask uvicorn to exit"""
        self.is_active = False
        if self._server is not None:
            self._server.should_exit = True
        logger.info("Control server stopped")
