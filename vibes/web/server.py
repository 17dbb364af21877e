"""
Vibes Assistant — HTTP surface.

FastAPI app served by uvicorn:
- POST /api/bot                   Telegram webhook (secret header checked first)
- GET  /api/bot/webhook           re-register the webhook with Telegram
- GET  /api/google-auth/callback  OAuth redirect target for Google Calendar
- GET  /healthz, /readyz          liveness / readiness probes

Without TELEGRAM_WEBHOOK_URL the bot long-polls instead, and the webhook
endpoint is simply never called.
"""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, Response
from telegram import Update
from telegram.ext import Application

from vibes.config import settings
from vibes.ports.calendar_port import CalendarError

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/bot"

_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><title>Vibes</title></head>
<body style="font-family:sans-serif;text-align:center;padding-top:15vh">
<h2>{title}</h2><p>{body}</p></body></html>"""


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(_PAGE.format(title=title, body=body), status_code=status_code)


def webhook_url() -> str:
    return settings.TELEGRAM_WEBHOOK_URL.rstrip("/") + WEBHOOK_PATH


async def register_webhook(telegram_app: Application) -> str:
    url = webhook_url()
    await telegram_app.bot.set_webhook(
        url=url,
        secret_token=settings.TELEGRAM_SECRET_TOKEN or None,
        allowed_updates=Update.ALL_TYPES,
    )
    logger.info("Telegram webhook set to %s", url)
    return url


def create_web_app(telegram_app: Application) -> FastAPI:
    """Build the FastAPI app around an (unstarted) Telegram Application."""

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await telegram_app.initialize()
        await telegram_app.start()
        polling = not settings.TELEGRAM_WEBHOOK_URL
        if polling:
            await telegram_app.bot.delete_webhook()
            await telegram_app.updater.start_polling()
            logger.info("Telegram long polling started")
        else:
            if not settings.TELEGRAM_SECRET_TOKEN:
                logger.warning("TELEGRAM_SECRET_TOKEN is empty; webhook calls are not authenticated")
            await register_webhook(telegram_app)
        try:
            yield
        finally:
            if polling:
                await telegram_app.updater.stop()
            await telegram_app.stop()
            await telegram_app.shutdown()

    app = FastAPI(title="Vibes", lifespan=lifespan, docs_url=None, redoc_url=None)

    @app.post(WEBHOOK_PATH)
    async def telegram_webhook(
        request: Request,
        secret: str | None = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
    ) -> Response:
        if not hmac.compare_digest(secret or "", settings.TELEGRAM_SECRET_TOKEN):
            logger.warning("Rejected webhook call with invalid secret token")
            return Response(status_code=status.HTTP_403_FORBIDDEN)

        try:
            payload = await request.json()
            update = Update.de_json(payload, telegram_app.bot)
            await telegram_app.process_update(update)
        except Exception as exc:
            # Telegram retries non-2xx responses; a poison update must not loop.
            logger.error("Failed to process webhook update: %s", exc)
        return Response(status_code=status.HTTP_200_OK)

    @app.get(WEBHOOK_PATH + "/webhook")
    async def set_webhook() -> JSONResponse:
        if not settings.TELEGRAM_WEBHOOK_URL:
            return JSONResponse(
                {"ok": False, "error": "TELEGRAM_WEBHOOK_URL is not configured"},
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        url = await register_webhook(telegram_app)
        return JSONResponse({"ok": True, "url": url})

    @app.get("/api/google-auth/callback", response_class=HTMLResponse)
    async def google_auth_callback(
        code: str | None = Query(default=None),
        state: str | None = Query(default=None),
        error: str | None = Query(default=None),
    ) -> HTMLResponse:
        if error:
            logger.warning("Google OAuth returned error=%s for state=%s", error, state)
            return _page("Access not granted", "You can close this tab and try again from Telegram.", 400)
        if not code or not state or not state.lstrip("-").isdigit():
            return _page("Invalid request", "The authorization link is incomplete.", 400)

        service = telegram_app.bot_data["service"]
        try:
            await service.complete_calendar_connection(int(state), code)
        except LookupError:
            return _page("Unknown user", "Send /start to the bot first, then connect again.", 404)
        except CalendarError as exc:
            logger.error("Calendar connection failed for %s: %s", state, exc)
            return _page("Connection failed", "Google did not accept the request. Try /connect_calendar again.", 400)

        return _page("Google Calendar connected ✅", "You can close this tab and return to Telegram.")

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz() -> JSONResponse:
        if not telegram_app.running:
            return JSONResponse({"status": "starting"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
        return JSONResponse({"status": "ready"})

    return app


def main() -> None:
    """Entry point: build the bot, wrap it in the web app and serve."""
    import uvicorn

    from vibes.bot.telegram_bot import build_app

    logger.info("Starting Vibes Assistant...")
    web_app = create_web_app(build_app())
    uvicorn.run(web_app, host=settings.HOST, port=settings.PORT)
