# etl/config.py
import os

DB = {
    "host": os.getenv("BIBLE_DB_HOST", "localhost"),
    "port": int(os.getenv("BIBLE_DB_PORT", "5432")),
    "dbname": os.getenv("BIBLE_DB_NAME", "biblechat"),
    "user": os.getenv("BIBLE_DB_USER", "bible"),
    "password": os.getenv("BIBLE_DB_PASSWORD", "biblepassword"),
}

DATA_DIR = os.path.join(os.path.dirname(__file__), "data")
VERSES_PATH = os.getenv("ETL_VERSES_PATH", os.path.join(DATA_DIR, "sample_verses.json"))
TOPICS_PATH = os.getenv("ETL_TOPICS_PATH", os.path.join(DATA_DIR, "topics.json"))

# rows per execute_values call
BATCH_SIZE = int(os.getenv("ETL_BATCH_SIZE", "100"))

DEFAULT_RELEVANCE = 0.8
DEFAULT_REFERENCE_TYPE = "related"

CONNECT_ATTEMPTS = int(os.getenv("ETL_CONNECT_ATTEMPTS", "5"))
