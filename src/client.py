"""Telegram client factories and session login for relayscope.

The Telethon user client reads the source channels and downloads media.
The Bot API client is only built when the destination is published to with
a bot. Logging in is a separate, interactive step (``relayscope login``);
the relay itself never prompts.
"""

from __future__ import annotations

import logging
import os
from getpass import getpass
from typing import Optional

import qrcode
from dotenv import load_dotenv
from telegram import Bot
from telethon import TelegramClient, errors

LOGGER = logging.getLogger(__name__)

LOGIN_METHODS = ("qr", "phone")
QR_TIMEOUT_SECONDS = 120


def build_client() -> TelegramClient:
    """Create a Telethon client from environment variables.

    API_ID/API_HASH come from the environment via python-dotenv. The session
    name defaults to "relayscope" to create a local .session file.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "relayscope")

    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    LOGGER.info("Initializing Telegram client")

    return TelegramClient(session_name, int(api_id), api_hash, connection_retries=5)


def build_bot() -> Bot:
    """Create a Bot API client from BOT_TOKEN."""

    load_dotenv()

    bot_token = os.getenv("BOT_TOKEN")
    if not bot_token:
        raise RuntimeError("BOT_TOKEN is required when delivery_method=bot")

    LOGGER.info("Initializing Bot API client")

    return Bot(bot_token)


async def ensure_authorized(client: TelegramClient) -> None:
    """Fail fast when the session file has no logged-in user."""

    if not await client.is_user_authorized():
        raise RuntimeError("Telegram session is not authorized, run `relayscope login` first")


def _password() -> str:
    return os.getenv("2FA") or getpass("2FA password: ")


async def _login_with_qr(client: TelegramClient) -> None:
    qr_login = await client.qr_login()
    code = qrcode.QRCode(border=1)
    code.add_data(qr_login.url)
    code.make(fit=True)
    code.print_ascii(invert=True)
    print("Scan the code in Telegram: Settings > Devices > Link Desktop Device")
    try:
        await qr_login.wait(timeout=QR_TIMEOUT_SECONDS)
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=_password())


async def login(client: TelegramClient, method: Optional[str] = None) -> None:
    """Authorize the user session interactively.

    ``method`` is "qr" or "phone" and defaults to LOGIN_METHOD, then "qr".
    The phone flow is Telethon's own ``start`` sequence (code, then 2FA).
    Does nothing when the session is already authorized.
    """

    if await client.is_user_authorized():
        LOGGER.info("Session is already authorized")
        return

    load_dotenv()
    method = (method or os.getenv("LOGIN_METHOD") or "qr").strip().lower()
    if method not in LOGIN_METHODS:
        raise ValueError(f"Unknown login method {method!r}, expected one of {', '.join(LOGIN_METHODS)}")

    if method == "phone":
        await client.start(
            phone=lambda: os.getenv("PHONE") or input("Phone number (international format): ").strip(),
            code_callback=lambda: input("Login code: ").strip(),
            password=_password,
        )
    else:
        await _login_with_qr(client)


async def verify_bot(bot: Bot) -> str:
    """Check BOT_TOKEN against the Bot API and return the bot's username."""

    async with bot:
        return bot.username
