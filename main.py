#!/usr/bin/env python3
"""
Streaming answer bot for Telegram.

Streams model answers into editable Telegram messages under the edit
rate limits, with stop, retry and paging between answer versions.

Architecture:
- Domain: Entities, value objects and the text splitter
- Application: Session lifecycle and version history
- Infrastructure: Telegram edit primitives, SQLite storage
- Presentation: Streaming editor, handlers, keyboards
"""

import sys
import asyncio
import logging
import signal
from pathlib import Path

from aiogram import Bot, Dispatcher

from shared.config.settings import Settings, get_settings
from shared.container import Container
from presentation.middleware.auth import AuthMiddleware
from presentation.handlers.callbacks.response import register_response_callbacks
from presentation.handlers.message.turn_handlers import register_turn_handlers

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    Path("logs").mkdir(exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("logs/bot.log")
        ]
    )


class Application:
    """
    Main application class.

    All services come from the Container.
    """

    def __init__(self, container: Container):
        self.container = container
        self.bot: Bot = None
        self.dp: Dispatcher = None
        self._shutdown_event = asyncio.Event()

    async def setup(self):
        """Initialize application components"""
        logger.info("Initializing bot...")

        await self.container.init()

        self.bot = self.container.bot()
        self.dp = Dispatcher()

        # Fail fast on a missing chunk source
        self.container.chunk_source()

        self._register_handlers()

        auth = AuthMiddleware(self.container.settings.telegram.allowed_user_ids)
        self.dp.message.middleware(auth)
        self.dp.edited_message.middleware(auth)
        self.dp.callback_query.middleware(auth)

        logger.info("Bot initialized successfully")

    def _register_handlers(self):
        register_response_callbacks(self.dp, self.container.response_callbacks())
        register_turn_handlers(self.dp, self.container.turn_handlers())

    async def start(self):
        """Start the bot"""
        await self.setup()

        logger.info("Starting bot polling...")
        info = await self.bot.get_me()
        logger.info(f"Bot: @{info.username} (ID: {info.id})")

        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda: asyncio.create_task(self.shutdown()))

        await self.dp.start_polling(
            self.bot,
            allowed_updates=["message", "edited_message", "callback_query"],
            handle_signals=sys.platform == "win32"
        )

    async def shutdown(self):
        """Graceful shutdown"""
        if self._shutdown_event.is_set():
            return

        logger.info("Shutting down...")
        self._shutdown_event.set()

        if self.dp:
            try:
                await self.dp.stop_polling()
            except RuntimeError:
                logger.debug("Polling was not running")

        await self.container.close()
        logger.info("Shutdown complete")


async def main():
    """Main entry point"""
    settings = get_settings()
    setup_logging(settings)

    app = Application(Container(settings))

    try:
        await app.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
    finally:
        await app.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
