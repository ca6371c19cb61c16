# backend/backoffice/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///backoffice.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Currency handling for valuation reports.
    # Markup is added to the rate only when converting INTO the base currency.
    BASE_CURRENCY = os.environ.get("BASE_CURRENCY", "GHS")
    REPORTING_CURRENCY = os.environ.get("REPORTING_CURRENCY", "USD")
    FX_MARKUP = os.environ.get("FX_MARKUP", "0.5")
    FX_RATES = {
        "USD_GHS": "12.5",
        "GBP_GHS": "16.0",
        "USD_GBP": "0.79",
    }

    # Upper bound on ids accepted by a single bulk stock mutation
    BULK_MUTATION_LIMIT = int(os.environ.get("BULK_MUTATION_LIMIT", "100"))
