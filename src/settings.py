"""Static configuration for relayscope.

All user-editable settings (channels, destination, pricing, timings,
logging) live in a single JSON file for quick edits without touching Python.
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Where to store the SQLite ledger database.
DB_PATH = os.path.join(os.path.dirname(__file__), "relayscope.db")

CONFIG_PATH = os.environ.get("RELAYSCOPE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Channel entries are normalized by core.config.build_channel_configs.
CHANNELS_CONFIG = _CONFIG.get("channels", [])

# Destination chat (Bot API style id, e.g. -100...) and delivery backend.
# - DELIVERY_METHOD: "bot" publishes with BOT_TOKEN, "user" with the Telethon session
_destination = _CONFIG.get("destination", {})
DESTINATION_CHAT_ID = int(_destination["chat_id"]) if _destination.get("chat_id") is not None else None
DELIVERY_METHOD = _destination.get("delivery_method", "bot")
DEFAULT_CAPTION = _destination.get("default_caption", "New product available")

# Markup applied to extracted prices unless a channel overrides it.
_pricing = _CONFIG.get("pricing", {})
MARKUP_PERCENT = float(_pricing.get("markup_percent", 17))
SHOW_MARKUP_NOTE = bool(_pricing.get("show_markup_note", False))

# Album collection timings. The flush window is not sliding: it starts at
# the first fragment of a group.
_aggregation = _CONFIG.get("aggregation", {})
FLUSH_WINDOW_SECONDS = float(_aggregation.get("flush_window_seconds", 2))
STALE_AFTER_SECONDS = float(_aggregation.get("stale_after_seconds", 300))
SWEEP_INTERVAL_SECONDS = float(_aggregation.get("sweep_interval_seconds", 60))

# Publish retry budget; the delay grows linearly with the attempt number.
_delivery = _CONFIG.get("delivery", {})
RETRY_ATTEMPTS = int(_delivery.get("retry_attempts", 3))
RETRY_DELAY_SECONDS = float(_delivery.get("retry_delay_seconds", 1.0))

# Ledger retention horizon.
_dedup = _CONFIG.get("dedup", {})
DEDUP_TTL_DAYS = int(_dedup.get("ttl_days", 30))

# Catch-up scan settings for startup backfill.
_catch_up = _CONFIG.get("catch_up", {})
CATCH_UP_ENABLED = bool(_catch_up.get("enabled", False))
CATCH_UP_MESSAGES_PER_SOURCE = int(_catch_up.get("messages_per_source", 20))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
