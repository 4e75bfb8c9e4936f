# adapters/external/database/mongo_client.py

from __future__ import annotations

import logging
import threading
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

APP_NAME = "paymaster-api"

_lock = threading.Lock()
_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def get_mongo_client() -> MongoClient:
    """
    Return the process-wide MongoClient.

    Built once under a lock, since the scheduler jobs (health monitors,
    rebalance, daily reset) can ask for it from several threads at startup.
    Server selection and connect give up after MONGO_TIMEOUT_MS so a monitor
    tick with the database down fails fast and frees its job slot.
    """
    global _client
    with _lock:
        if _client is None:
            settings = get_settings()
            if not settings.MONGO_URI:
                raise RuntimeError(
                    "MONGO_URI is not configured. Please set it in your settings "
                    "so the paymaster registry can connect to MongoDB."
                )
            timeout_ms = int(settings.MONGO_TIMEOUT_MS)
            _client = MongoClient(
                settings.MONGO_URI,
                appname=APP_NAME,
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
            )
            logger.info("[Mongo] Client created (timeout=%sms)", timeout_ms)
        return _client


def get_mongo_db() -> Database:
    """
    Return the database (MONGO_DB) holding the paymaster collections.
    """
    global _db
    client = get_mongo_client()
    with _lock:
        if _db is None:
            db_name = get_settings().MONGO_DB
            if not db_name:
                raise RuntimeError(
                    "MONGO_DB is not configured. Please set it in your settings "
                    "so the paymaster registry can select a MongoDB database."
                )
            _db = client[db_name]
        return _db


def close_mongo_client() -> None:
    """
    Close the shared client on shutdown. A later call to get_mongo_client()
    builds a new one.
    """
    global _client, _db
    with _lock:
        client, _client, _db = _client, None, None
    if client is not None:
        client.close()
        logger.info("[Mongo] Client closed")
