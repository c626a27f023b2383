"""Static configuration for midnight.

Secrets (bot token, Telegram API credentials, osu! OAuth client) come from
the environment via python-dotenv. Tunables (feed timing, storage, logging)
live in config.json for quick edits without touching Python; every key is
optional.
"""

import json
import os

from dotenv import load_dotenv

from core.config import GROUPS, MAPFEED, MAX_CONCURRENT_REQUESTS, DispatchConfig, StoreRetryConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

load_dotenv(os.path.join(PROJECT_ROOT, ".env"))


def _load_json_config() -> dict:
    """Load config.json; a missing file means all defaults."""

    if not os.path.exists(CONFIG_PATH):
        return {}
    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Telegram bot credentials. API_ID/API_HASH identify the app, BOT_TOKEN the bot.
BOT_TOKEN = os.getenv("BOT_TOKEN", "")
API_ID = os.getenv("API_ID", "")
API_HASH = os.getenv("API_HASH", "")
SESSION_NAME = os.getenv("SESSION_NAME", "midnight")

# osu! OAuth client used for the client-credentials grant.
OSU_CLIENT_ID = os.getenv("OSU_CLIENT_ID", "")
OSU_CLIENT_SECRET = os.getenv("OSU_CLIENT_SECRET", "")

_osu = _CONFIG.get("osu", {})
OSU_BASE_URL = _osu.get("base_url", "https://osu.ppy.sh/api/v2")
OSU_TOKEN_URL = _osu.get("token_url", "https://osu.ppy.sh/oauth/token")
OSU_WEB_URL = _osu.get("web_url", "https://osu.ppy.sh")
HTTP_TIMEOUT = float(_osu.get("timeout_seconds", 30))
USER_AGENT = _osu.get("user_agent", "midnight (+https://osu.ppy.sh)")
MAX_CONCURRENT_REQUESTS = int(_osu.get("max_concurrent_requests", MAX_CONCURRENT_REQUESTS))

# Where to store the SQLite database; relative paths are under the project root.
_storage = _CONFIG.get("storage", {})
DB_PATH = _storage.get("db_path", "midnight.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)
STORE_ATTEMPTS = int(_storage.get("attempts", StoreRetryConfig.attempts))
STORE_RETRY_DELAY = float(_storage.get("retry_delay_seconds", StoreRetryConfig.delay))

# Feed timing in seconds.
_feeds = _CONFIG.get("feeds", {})
_mapfeed = _feeds.get("mapfeed", {})
MAPFEED_INTERVAL = float(_mapfeed.get("interval_seconds", MAPFEED.interval))
MAPFEED_BACKOFF = float(_mapfeed.get("backoff_seconds", MAPFEED.backoff))
_groups = _feeds.get("groups", {})
GROUPS_INTERVAL = float(_groups.get("interval_seconds", GROUPS.interval))
GROUPS_BACKOFF = float(_groups.get("backoff_seconds", GROUPS.backoff))

# How long subscribe/unsubscribe and delete buttons stay live.
BUTTON_LIFETIME = float(
    _CONFIG.get("notifications", {}).get("button_lifetime_seconds", DispatchConfig.button_lifetime)
)

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
