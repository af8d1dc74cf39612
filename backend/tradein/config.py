# backend/tradein/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tradein.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///tradein.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Global order counter: first issued order number is START + 1
    ORDER_SEQUENCE_NAME = "orderId"
    ORDER_SEQUENCE_START = 1000

    # Transactional retry ladder for the counter (seconds, doubled per attempt)
    SEQUENCE_MAX_ATTEMPTS = int(os.environ.get("SEQUENCE_MAX_ATTEMPTS", "5"))
    SEQUENCE_BACKOFF_BASE = float(os.environ.get("SEQUENCE_BACKOFF_BASE", "0.01"))

    # Capture requirements at verification time
    MIN_DEVICE_PHOTOS = 3
    MIN_ID_PROOF_PHOTOS = 1
