"""Application entry point for the relayscope relay."""

from __future__ import annotations

import argparse
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import tprint
from dotenv import load_dotenv
from telethon import events

import settings
from adapters.bot_delivery import BotApiDelivery
from adapters.channel_registry import ConfigChannelRegistry
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_mapper import build_source_message
from adapters.telethon_delivery import TelethonDelivery, TelethonMediaDownloader
from client import build_bot, build_client, ensure_authorized, login, verify_bot
from core.aggregator import GroupAggregator
from core.config import AggregationConfig, DedupConfig, RetryConfig, build_channel_configs
from core.dedup import DedupLedger
from core.processor import MessageProcessor
from core.publisher import PublishPipeline
from core.scheduling import AsyncioScheduler

NAME = "RELAYSCOPE"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", ["API_HASH", "BOT_TOKEN"]):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/relayscope.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # Telethon and httpx are chatty at INFO.
    logging.getLogger("telethon").setLevel(max(level, logging.WARNING))
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


async def _catch_up_scan(client, registry: ConfigChannelRegistry, processor: MessageProcessor) -> None:
    """Replay recent channel history through the normal intake path.

    The ledger skips everything already relayed, so only posts missed while
    the relay was down are published.
    """

    if not settings.CATCH_UP_ENABLED:
        return

    logger = logging.getLogger(__name__)
    messages_checked = 0
    for channel in registry.active_channels:
        try:
            target = channel.channel_id if channel.channel_id.startswith("@") else int(channel.channel_id)
            entity = await client.get_entity(target)
        except Exception:
            logger.exception("Failed to resolve channel %s during catch-up", channel.channel_id)
            continue

        messages = []
        async for message in client.iter_messages(entity, limit=settings.CATCH_UP_MESSAGES_PER_SOURCE):
            messages.append(message)

        for message in reversed(messages):
            source_message = build_source_message(message)
            if source_message is None:
                continue
            messages_checked += 1
            await processor.handle(source_message)

    logger.info(
        "Catch-up scan complete: channels=%s, messages=%s",
        len(registry.active_channels),
        messages_checked,
    )


def _build_delivery(client):
    if settings.DELIVERY_METHOD == "bot":
        return BotApiDelivery(build_bot())
    if settings.DELIVERY_METHOD == "user":
        return TelethonDelivery(client)
    raise RuntimeError("destination.delivery_method must be 'bot' or 'user'")


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting relayscope")

    if settings.DESTINATION_CHAT_ID is None:
        raise RuntimeError("destination.chat_id is required in config.json")

    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    dedup_config = DedupConfig(ttl_days=settings.DEDUP_TTL_DAYS)
    removed = storage.cleanup_processed(dedup_config.ttl_days)
    logger.info("Ledger cleanup removed %s records", removed)

    registry = ConfigChannelRegistry(build_channel_configs(settings.CHANNELS_CONFIG))
    logger.info("%s active channels are loaded", len(registry.active_channels))

    client = build_client()
    client.loop.run_until_complete(client.connect())
    client.loop.run_until_complete(ensure_authorized(client))

    delivery = _build_delivery(client)
    if isinstance(delivery, BotApiDelivery):
        client.loop.run_until_complete(delivery.initialize())
        client.loop.run_until_complete(delivery.check_destination(settings.DESTINATION_CHAT_ID))
    logger.info("Selected delivery method - %s", settings.DELIVERY_METHOD)

    publisher = PublishPipeline(
        delivery=delivery,
        downloader=TelethonMediaDownloader(client),
        retry=RetryConfig(attempts=settings.RETRY_ATTEMPTS, delay=settings.RETRY_DELAY_SECONDS),
        default_caption=settings.DEFAULT_CAPTION,
        show_markup=settings.SHOW_MARKUP_NOTE,
    )
    ledger = DedupLedger(storage)
    scheduler = AsyncioScheduler(client.loop)
    aggregator = GroupAggregator(
        publisher=publisher,
        ledger=ledger,
        scheduler=scheduler,
        config=AggregationConfig(
            flush_window=settings.FLUSH_WINDOW_SECONDS,
            stale_after=settings.STALE_AFTER_SECONDS,
            sweep_interval=settings.SWEEP_INTERVAL_SECONDS,
        ),
    )
    processor = MessageProcessor(
        registry=registry,
        ledger=ledger,
        aggregator=aggregator,
        publisher=publisher,
        destination_chat_id=settings.DESTINATION_CHAT_ID,
        default_markup=settings.MARKUP_PERCENT,
    )

    client.loop.run_until_complete(_catch_up_scan(client, registry, processor))

    @client.on(events.NewMessage(incoming=True))
    async def handler(event) -> None:
        try:
            source_message = build_source_message(event.message)
            if source_message is None:
                return
            await processor.handle(source_message)
        except Exception:
            logger.exception("Error while handling incoming message")

    aggregator.start()
    client.start()
    logger.info("Client connected. Listening for channel posts...")
    try:
        client.run_until_disconnected()
    finally:
        # Pending albums are published once before exit.
        client.loop.run_until_complete(aggregator.stop())
        client.loop.run_until_complete(scheduler.drain())
        if isinstance(delivery, BotApiDelivery):
            client.loop.run_until_complete(delivery.shutdown())


def _channel_title(dialog: Any) -> str:
    entity = getattr(dialog, "entity", None)
    title = getattr(entity, "title", None) or getattr(dialog, "name", None)
    return str(title) if title else "unknown"


async def _list_channels(client) -> None:
    channels = []
    async for dialog in client.iter_dialogs():
        if not getattr(dialog, "is_channel", False):
            continue
        if getattr(dialog.entity, "megagroup", False):
            continue
        channels.append(dialog)

    if not channels:
        print("No channels found for this account.")
        return

    for index, dialog in enumerate(channels, start=1):
        print(f"{index}. {_channel_title(dialog)} | channel_id: {dialog.id}")


def _discover() -> None:
    _print_banner()
    client = build_client()

    async def _run_discover() -> None:
        await client.connect()
        try:
            await ensure_authorized(client)
            await _list_channels(client)
        finally:
            await client.disconnect()

    client.loop.run_until_complete(_run_discover())


def _login(method: Optional[str]) -> None:
    _print_banner()
    client = build_client()

    async def _run_login() -> None:
        await client.connect()
        try:
            await login(client, method)
            me = await client.get_me()
            print(f"Session ready for {me.first_name}")
        finally:
            await client.disconnect()

        if settings.DELIVERY_METHOD == "bot":
            username = await verify_bot(build_bot())
            print(f"Bot token is valid for @{username}")

    client.loop.run_until_complete(_run_login())


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="relayscope")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the relay")
    subparsers.add_parser("discover", help="List channels visible to the account with their ids")
    login_parser = subparsers.add_parser("login", help="Authorize the Telegram user session")
    login_parser.add_argument("--method", choices=["qr", "phone"], default=None)

    args = parser.parse_args(argv)
    if args.command == "discover":
        _discover()
        return
    if args.command == "login":
        _login(args.method)
        return
    _run()


if __name__ == "__main__":
    main()
