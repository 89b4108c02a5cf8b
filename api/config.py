import os

DB = {
    "host": os.getenv("BIBLE_DB_HOST", "localhost"),
    "port": int(os.getenv("BIBLE_DB_PORT", "5432")),
    "dbname": os.getenv("BIBLE_DB_NAME", "biblechat"),
    "user": os.getenv("BIBLE_DB_USER", "bible"),
    "password": os.getenv("BIBLE_DB_PASSWORD", "biblepassword"),
}

API_TITLE = "BibleChat API"
API_VERSION = "1.0.0"
API_PREFIX = "/api/v1"

APP_DEBUG = os.getenv("APP_DEBUG", "0") == "1"

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CACHE_BACKEND = os.getenv("CACHE_BACKEND", "redis")

CACHE_TTL_LONG = int(os.getenv("CACHE_TTL_LONG", "3600"))
CACHE_TTL_DAY = int(os.getenv("CACHE_TTL_DAY", "86400"))

TRANSLATIONS = ("NIV", "ESV", "KJV", "NLT", "NASB", "NKJV")
DEFAULT_TRANSLATION = os.getenv("DEFAULT_TRANSLATION", "KJV")

RESPONSE_MODES = ("conversational", "study", "devotional", "simple")

TIERS = ("free", "paid", "premium")
TIER_LEVELS = {"free": 0, "paid": 1, "premium": 2}

RATE_LIMIT_WINDOW_SEC = int(os.getenv("RATE_LIMIT_WINDOW_SEC", "3600"))
RATE_LIMITS = {
    "free": int(os.getenv("RATE_LIMIT_FREE", "100")),
    "paid": int(os.getenv("RATE_LIMIT_PAID", "1000")),
    "premium": int(os.getenv("RATE_LIMIT_PREMIUM", "10000")),
}

MONTHLY_LIMITS = {
    "free": 1000,
    "paid": 10000,
    "premium": 100000,
}
