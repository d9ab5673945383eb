#!/usr/bin/env python3
"""
Pinboard Bot
────────────
Telegram front end for the pin store. Each Telegram user gets their own
pin set, loaded from the SQLite repository on first use.
Point it at its own database file, not the one a pin_server process uses.

Setup:
    export PINBOARD_BOT_TOKEN=your_token_here
    python pin_bot.py --config pinboard.yaml

Commands:
    /pins
    /pin <type> <id>
    /unpin <type> <id>
    /open <type> <id>
    /order <pin id> <pin id> …
    /sweep
    /help
"""

import logging
import os
import sys
import threading
from typing import Optional

from telegram import Update, BotCommand
from telegram.ext import Application, CommandHandler, ContextTypes

from pinboard import messages
from pinboard.config import ConfigError, PinConfig
from pinboard.errors import PinError
from pinboard.persistence import SQLitePinRepository
from pinboard.schema import EntityType
from pinboard.store import PinStore

logger = logging.getLogger(__name__)

COMMANDS = {
    "pins": "Show your pinned items",
    "pin": "Pin an item: /pin <type> <id>",
    "unpin": "Unpin an item: /unpin <type> <id>",
    "open": "Mark a pinned item as opened: /open <type> <id>",
    "order": "Reorder pins: /order <pin id> …",
    "sweep": "Clear pins idle for too long",
    "help": "Show available commands",
}


class PinBot:
    """
    Telegram bot exposing pin/unpin/open/order/sweep.

    Handles:
        - allowlist auth (config.allowed_users; empty means everyone)
        - lazy per-user loading from the repository
        - turning PinErrors into actionable replies
    """

    def __init__(self, config: PinConfig, store: Optional[PinStore] = None):
        self.cfg = config
        self.store = store or PinStore(
            config=config,
            repository=SQLitePinRepository(config.db_path, max_pins=config.max_pins),
        )
        self._load_lock = threading.Lock()

    # ──────────────────────────────────────────
    # Auth + parsing helpers
    # ──────────────────────────────────────────

    def _is_authorized(self, update: Update) -> bool:
        if not self.cfg.allowed_users:
            return True
        return str(update.effective_user.id) in self.cfg.allowed_users

    def _user_id(self, update: Update) -> str:
        user_id = str(update.effective_user.id)
        with self._load_lock:
            if not self.store.is_loaded(user_id):
                self.store.load(user_id)
        return user_id

    async def _guard(self, update: Update) -> bool:
        """Reject unauthorized users. Returns True when the handler may proceed."""
        if self._is_authorized(update):
            return True
        user = update.effective_user
        logger.warning(f"Unauthorized access attempt: user_id={user.id}, username={user.username}")
        await update.message.reply_text("⛔ You are not allowed to use this bot.")
        return False

    @staticmethod
    def _entity_args(context: ContextTypes.DEFAULT_TYPE):
        args = list(context.args or [])
        if len(args) != 2:
            return None
        return args[0], args[1]

    async def _usage(self, update: Update, command: str):
        types = "|".join(EntityType.values())
        await update.message.reply_text(
            f"Usage: `/{command} <{types}> <id>`", parse_mode="Markdown"
        )

    # ──────────────────────────────────────────
    # Handlers
    # ──────────────────────────────────────────

    async def cmd_pins(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /pins — list pins in display order."""
        if not await self._guard(update):
            return
        try:
            views = self.store.list(self._user_id(update))
        except PinError as e:
            await update.message.reply_text(f"❌ {messages.describe_error(e)}")
            return
        await update.message.reply_text(
            messages.format_pin_list(views, self.cfg.max_pins), parse_mode="Markdown"
        )

    async def cmd_pin(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._guard(update):
            return
        parsed = self._entity_args(context)
        if parsed is None:
            await self._usage(update, "pin")
            return
        entity_type, entity_id = parsed
        try:
            item = self.store.pin(self._user_id(update), entity_type, entity_id)
        except PinError as e:
            await update.message.reply_text(f"❌ {messages.describe_error(e)}")
            return
        await update.message.reply_text(f"📌 Pinned {item.entity_type.label} {item.entity_id}")

    async def cmd_unpin(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._guard(update):
            return
        parsed = self._entity_args(context)
        if parsed is None:
            await self._usage(update, "unpin")
            return
        try:
            item = self.store.unpin(self._user_id(update), *parsed)
        except PinError as e:
            await update.message.reply_text(f"❌ {messages.describe_error(e)}")
            return
        await update.message.reply_text(f"Unpinned {item.entity_type.label} {item.entity_id}")

    async def cmd_open(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._guard(update):
            return
        parsed = self._entity_args(context)
        if parsed is None:
            await self._usage(update, "open")
            return
        try:
            item = self.store.touch(self._user_id(update), *parsed)
        except PinError as e:
            await update.message.reply_text(f"❌ {messages.describe_error(e)}")
            return
        await update.message.reply_text(f"👀 Opened {item.entity_type.label} {item.entity_id}")

    async def cmd_order(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._guard(update):
            return
        ordered_ids = list(context.args or [])
        if not ordered_ids:
            await update.message.reply_text(
                "Usage: `/order <pin id> <pin id> …` (ids are shown by /pins)",
                parse_mode="Markdown",
            )
            return
        try:
            user_id = self._user_id(update)
            self.store.reorder(user_id, ordered_ids)
        except PinError as e:
            await update.message.reply_text(f"❌ {messages.describe_error(e)}")
            return
        await update.message.reply_text(
            messages.format_pin_list(self.store.list(user_id), self.cfg.max_pins),
            parse_mode="Markdown",
        )

    async def cmd_sweep(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._guard(update):
            return
        try:
            evicted = self.store.sweep(self._user_id(update))
        except PinError as e:
            await update.message.reply_text(f"❌ {messages.describe_error(e)}")
            return
        await update.message.reply_text(messages.format_sweep(evicted))

    async def cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        lines = ["📌 *Pinboard*", ""]
        lines += [f"/{name} — {desc}" for name, desc in COMMANDS.items()]
        await update.message.reply_text("\n".join(lines), parse_mode="Markdown")

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def register_handlers(self, app: Application):
        app.add_handler(CommandHandler("help", self.cmd_help))
        app.add_handler(CommandHandler("start", self.cmd_help))
        app.add_handler(CommandHandler("pins", self.cmd_pins))
        app.add_handler(CommandHandler("pin", self.cmd_pin))
        app.add_handler(CommandHandler("unpin", self.cmd_unpin))
        app.add_handler(CommandHandler("open", self.cmd_open))
        app.add_handler(CommandHandler("order", self.cmd_order))
        app.add_handler(CommandHandler("sweep", self.cmd_sweep))

    async def set_bot_commands(self, app: Application):
        """Set command suggestions in Telegram UI (autocomplete menu)."""
        await app.bot.set_my_commands(
            [BotCommand(name, desc[:256]) for name, desc in COMMANDS.items()]
        )

    def run(self):
        """Build Telegram Application, register handlers, and start polling."""
        token = os.environ.get(self.cfg.telegram_token_env)
        if not token:
            raise ConfigError(
                f"Environment variable {self.cfg.telegram_token_env} is not set.\n"
                f"Set it:  export {self.cfg.telegram_token_env}=your_bot_token"
            )
        app = Application.builder().token(token).build()
        self.register_handlers(app)

        async def post_init(application):
            await self.set_bot_commands(application)

        app.post_init = post_init
        logger.info("Starting pin_bot…")
        app.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Pinboard Telegram bot")
    parser.add_argument("--config", help="Path to pinboard.yaml")
    args = parser.parse_args()

    cfg = PinConfig.load(args.config)
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [pin_bot] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    PinBot(cfg).run()
