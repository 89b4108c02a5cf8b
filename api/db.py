import psycopg2

from api.config import DB


def connect():
    return psycopg2.connect(**DB)


def get_conn():
    conn = connect()
    try:
        yield conn
    finally:
        conn.close()
