"""
Run locally:
  python -m venv .venv && . .venv/bin/activate
  pip install -r requirements.txt
  export TELEGRAM_TOKEN='<bot token>'
  export SHEET_ID='<spreadsheet key>'
  export GOOGLE_SERVICE_ACCOUNT_KEY="$(cat service-account.json)"
  export ADMIN_CHAT_ID='<chat id>'      # optional
  python ont_stock_bot.py

Variables can also be put in a .env file next to the script.
Optional for webhook:
  WEBHOOK_URL=https://<your-app>/webhook
  PORT=8080
"""

from __future__ import annotations

import html
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Mapping, Optional

from dotenv import load_dotenv
from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import (
    AIORateLimiter,
    Application,
    ApplicationBuilder,
    ContextTypes,
    MessageHandler,
    filters,
)

from pivot import EmptySheetError, build_pivot, export_xlsx, render_report
from reservation import (
    Outcome,
    count_outcomes,
    format_result,
    is_user_authorized,
    parse_serials,
    reserve_serials,
)
from sheets import SHEET_STOCK, RowStore, SheetsRowStore, parse_service_account

# ---------- Logging ----------
LOG = logging.getLogger("ont_stock_bot")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(format=LOG_FORMAT)
    # basicConfig is a no-op once the root logger has handlers; set the level anyway.
    logging.getLogger().setLevel(level)

# ---------- Config ----------
@dataclass(frozen=True)
class Settings:
    telegram_token: str
    sheet_id: str
    service_account: Dict[str, str]
    admin_chat_id: Optional[str] = None
    webhook_url: str = ""
    port: int = 8080
    log_level: str = "INFO"


def _require(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise SystemExit(f"ERROR: {name} tidak ditemukan di environment variables!")
    return value


def _port(env: Mapping[str, str]) -> int:
    raw = (env.get("PORT") or "8080").strip()
    try:
        port = int(raw)
    except ValueError as e:
        raise SystemExit(f"ERROR: PORT tidak valid: {raw!r}") from e
    if not 0 < port < 65536:
        raise SystemExit(f"ERROR: PORT tidak valid: {raw!r}")
    return port


def _log_level(env: Mapping[str, str]) -> str:
    level = (env.get("LOG_LEVEL") or "INFO").strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise SystemExit(f"ERROR: LOG_LEVEL tidak valid: {level!r}")
    return level


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> Settings:
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ
    token = _require(env, "TELEGRAM_TOKEN")
    sheet_id = _require(env, "SHEET_ID")
    raw_key = _require(env, "GOOGLE_SERVICE_ACCOUNT_KEY")
    try:
        service_account = parse_service_account(raw_key)
    except ValueError as e:
        raise SystemExit(f"ERROR: GOOGLE_SERVICE_ACCOUNT_KEY tidak valid: {e}") from e
    return Settings(
        telegram_token=token,
        sheet_id=sheet_id,
        service_account=service_account,
        admin_chat_id=(env.get("ADMIN_CHAT_ID") or "").strip() or None,
        webhook_url=(env.get("WEBHOOK_URL") or "").strip(),
        port=_port(env),
        log_level=_log_level(env),
    )

# ---------- Messages ----------
MSG_DENIED = "🚫 Akses ditolak. Anda tidak terdaftar."
MSG_UNKNOWN_COMMAND = (
    "❓ Command tidak dikenali. Gunakan:\n"
    "• /myid - Lihat Chat ID\n"
    "• /pivot - Lihat rekap stock (perlu login)\n"
    "• /export - Rekap stock dalam Excel (perlu login)"
)
MSG_EMPTY_INPUT = (
    "⚠️ Masukkan SN (ONT/STB/AP), bisa lebih dari 1 baris, "
    "atau gunakan command /pivot untuk melihat rekap."
)
MSG_EMPTY_SHEET = "❌ Data sheet kosong"
MSG_PIVOT_FAILED = "❌ Error saat membuat pivot. Silakan coba lagi."
MSG_FAILED = "❌ Terjadi kesalahan saat memproses permintaan. Silakan coba lagi."


def now_id(now: Optional[datetime] = None) -> str:
    # id-ID locale layout, day and month unpadded: 5/1/2026, 09.03.04
    d = now or datetime.now()
    return f"{d.day}/{d.month}/{d.year}, {d:%H.%M.%S}"


def display_username(telegram_username: Optional[str]) -> str:
    return f"@{telegram_username}" if telegram_username else "-"


SendMessage = Callable[..., Awaitable[object]]

# ---------- Handlers ----------
class StockBot:
    """Chat command surface. Store and Telegram senders are injected."""

    def __init__(
        self,
        store: RowStore,
        send_message: SendMessage,
        send_document: Optional[SendMessage] = None,
        admin_chat_id: Optional[str] = None,
        clock: Callable[[], str] = now_id,
    ):
        self.store = store
        self.send_message = send_message
        self.send_document = send_document
        self.admin_chat_id = admin_chat_id
        self.clock = clock

    async def reply(self, chat_id, text: str) -> None:
        try:
            await self.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.HTML)
        except Exception:
            LOG.exception("Error sending telegram message to %s", chat_id)

    async def notify_admin(self, text: str) -> None:
        if self.admin_chat_id:
            await self.reply(self.admin_chat_id, text)

    async def handle_text(self, chat_id, username: str, text: str) -> None:
        text = (text or "").strip()
        command = text.upper()
        try:
            if command == "/MYID":
                await self.reply(
                    chat_id, f"🆔 Chat ID Anda: <code>{chat_id}</code>\nUsername: {html.escape(username)}"
                )
                return

            if command in ("/PIVOT", "/EXPORT"):
                if not await is_user_authorized(self.store, username):
                    await self.reply(chat_id, MSG_DENIED)
                    return
                if command == "/PIVOT":
                    await self.handle_pivot(chat_id)
                else:
                    await self.handle_export(chat_id)
                return

            if text.startswith("/"):
                await self.reply(chat_id, MSG_UNKNOWN_COMMAND)
                return

            if not text:
                await self.reply(chat_id, MSG_EMPTY_INPUT)
                return

            if not await is_user_authorized(self.store, username):
                LOG.warning("Denied %s (chat %s)", username, chat_id)
                await self.reply(chat_id, MSG_DENIED)
                await self.notify_admin(
                    "🚫 <b>AKSES DITOLAK</b>\n\n"
                    f"User: {html.escape(username)}\n"
                    f"Chat ID: {chat_id}\n"
                    f"Input: {html.escape(text)}\n\n"
                    f"Waktu: {self.clock()}"
                )
                return

            await self.handle_serials(chat_id, username, text)
        except Exception:
            LOG.exception("Error handling message from %s", username)
            await self.reply(chat_id, MSG_FAILED)

    async def handle_serials(self, chat_id, username: str, text: str) -> None:
        serials = parse_serials(text)
        timestamp = self.clock()
        results = await reserve_serials(self.store, serials, username, timestamp)

        await self.reply(chat_id, "\n\n".join(format_result(r, username) for r in results))

        counts = count_outcomes(results)
        LOG.info(
            "%s: %d reserved, %d not found, %d already used",
            username,
            counts[Outcome.RESERVED],
            counts[Outcome.NOT_FOUND],
            counts[Outcome.ALREADY_USED],
        )
        await self.notify_admin(
            "📊 <b>AKTIVITAS USER</b>\n\n"
            f"👤 User: {html.escape(username)}\n"
            f"🆔 Chat ID: {chat_id}\n"
            f"📅 Waktu: {timestamp}\n\n"
            f"🔍 <b>Input SN:</b>\n{html.escape(', '.join(serials))}\n\n"
            "📈 <b>Hasil:</b>\n"
            f"✅ Berhasil disimpan: {counts[Outcome.RESERVED]}\n"
            f"❌ Tidak ditemukan: {counts[Outcome.NOT_FOUND]}\n"
            f"⚠️ Sudah digunakan: {counts[Outcome.ALREADY_USED]}\n"
            f"📊 Total SN diproses: {len(serials)}"
        )

    async def handle_pivot(self, chat_id) -> None:
        try:
            pivot = build_pivot(await self.store.get_rows(SHEET_STOCK))
        except EmptySheetError:
            await self.reply(chat_id, MSG_EMPTY_SHEET)
            return
        except Exception:
            LOG.exception("Error in handle_pivot")
            await self.reply(chat_id, MSG_PIVOT_FAILED)
            return
        await self.reply(chat_id, render_report(pivot))

    async def handle_export(self, chat_id) -> None:
        if self.send_document is None:
            LOG.error("Export requested but no document sender is configured")
            await self.reply(chat_id, MSG_FAILED)
            return
        try:
            pivot = build_pivot(await self.store.get_rows(SHEET_STOCK))
        except EmptySheetError:
            await self.reply(chat_id, MSG_EMPTY_SHEET)
            return
        except Exception:
            LOG.exception("Error in handle_export")
            await self.reply(chat_id, MSG_PIVOT_FAILED)
            return
        await self.send_document(
            chat_id=chat_id,
            document=export_xlsx(pivot),
            filename="pivot_stock.xlsx",
            caption=f"Rekap pivot {self.clock()}",
        )

# ---------- Telegram glue ----------
async def on_message(update: Update, ctx: ContextTypes.DEFAULT_TYPE) -> None:
    msg = update.effective_message
    if not msg or (msg.from_user and msg.from_user.is_bot):
        return
    bot: StockBot = ctx.bot_data["stock_bot"]
    username = display_username(msg.from_user.username if msg.from_user else None)
    await bot.handle_text(msg.chat_id, username, msg.text or "")


async def on_error(update: object, ctx: ContextTypes.DEFAULT_TYPE) -> None:
    LOG.error("Bot error", exc_info=ctx.error)


def build_application(settings: Settings, store: Optional[RowStore] = None) -> Application:
    app: Application = (
        ApplicationBuilder()
        .token(settings.telegram_token)
        .rate_limiter(AIORateLimiter(max_retries=2))
        .build()
    )
    app.bot_data["stock_bot"] = StockBot(
        store or SheetsRowStore(settings.sheet_id, settings.service_account),
        send_message=app.bot.send_message,
        send_document=app.bot.send_document,
        admin_chat_id=settings.admin_chat_id,
    )
    app.add_handler(MessageHandler(filters.UpdateType.MESSAGE, on_message))
    app.add_error_handler(on_error)
    return app


# ---------- App bootstrap ----------
def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    app = build_application(settings)

    LOG.info("Sheet ID: %s", "Loaded" if settings.sheet_id else "Missing")
    LOG.info("Admin Chat ID: %s", settings.admin_chat_id or "Not set")

    if settings.webhook_url:
        full_webhook = f"{settings.webhook_url.rstrip('/')}/{settings.telegram_token}"
        LOG.info("Starting webhook on port %d", settings.port)
        app.run_webhook(
            listen="0.0.0.0",
            port=settings.port,
            url_path=settings.telegram_token,
            webhook_url=full_webhook,
        )
    else:
        LOG.info("Bot ONT polling berjalan...")
        app.run_polling()


if __name__ == "__main__":
    main()
