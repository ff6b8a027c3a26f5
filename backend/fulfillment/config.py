# backend/fulfillment/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fulfillment.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fulfillment.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Browser origins allowed to call the API (comma separated)
    CORS_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
        ).split(",")
        if origin.strip()
    }

    # Order status moves are free by default; True rejects backwards moves
    # and moves out of DELIVERED/CANCELLED/RETURNED.
    ENFORCE_FORWARD_ORDER_TRANSITIONS = _env_flag("ENFORCE_FORWARD_ORDER_TRANSITIONS", False)

    # True: restock the returned lines at their returned quantities.
    # False: restock every line of the parent order at its ordered quantity.
    RESTOCK_ONLY_RETURNED_ITEMS = _env_flag("RESTOCK_ONLY_RETURNED_ITEMS", True)
