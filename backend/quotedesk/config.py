# backend/quotedesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key (also signs quote links)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/quotedesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///quotedesk.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Quote artifacts
    ARTIFACT_STORAGE_DIR = os.environ.get("ARTIFACT_STORAGE_DIR", "instance/quotes")
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://127.0.0.1:5001")
    QUOTE_LINK_TTL_SECONDS = int(os.environ.get("QUOTE_LINK_TTL_SECONDS", str(7 * 24 * 3600)))
    IMAGE_FETCH_TIMEOUT_SECONDS = float(os.environ.get("IMAGE_FETCH_TIMEOUT_SECONDS", "5"))

    # Mail transport: "memory" keeps an in-process outbox, "http" posts to MAIL_ENDPOINT_URL
    MAIL_BACKEND = os.environ.get("MAIL_BACKEND", "memory")
    MAIL_ENDPOINT_URL = os.environ.get("MAIL_ENDPOINT_URL", "")
    MAIL_API_KEY = os.environ.get("MAIL_API_KEY", "")
    MAIL_TIMEOUT_SECONDS = float(os.environ.get("MAIL_TIMEOUT_SECONDS", "10"))
    ADMIN_NOTIFY_EMAIL = os.environ.get("ADMIN_NOTIFY_EMAIL", "")
    NOTIFY_ON_STATUS_CHANGE = _env_bool("NOTIFY_ON_STATUS_CHANGE", True)

    # Background tasks
    TASKS_ALWAYS_EAGER = _env_bool("TASKS_ALWAYS_EAGER", False)
    TASK_WORKERS = int(os.environ.get("TASK_WORKERS", "4"))
    DOCUMENT_TIMEOUT_SECONDS = float(os.environ.get("DOCUMENT_TIMEOUT_SECONDS", "60"))
    NOTIFY_TIMEOUT_SECONDS = float(os.environ.get("NOTIFY_TIMEOUT_SECONDS", "30"))

    # Branding / quote content
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "CRONOS BRINDES CORPORATIVOS")
    COMPANY_EMAIL = os.environ.get("COMPANY_EMAIL", "comercial@cronosbrindes.com.br")
    CURRENCY_SYMBOL = os.environ.get("CURRENCY_SYMBOL", "R$")

    DEFAULT_PAYMENT_TERMS = "21 DDL, CONTADOS A PARTIR DA EMISSÃO DA NF DE VENDA."
    DEFAULT_DELIVERY_TERMS = "A COMBINAR"
    DEFAULT_VALIDITY_TERMS = (
        "10 DIAS - SUJEITO A CONFIRMAÇÃO DE ESTOQUE NO ATO DA FORMALIZAÇÃO DA COMPRA."
    )
    QUOTE_LEGAL_TEXT = (
        "Valores sujeitos a alteração sem aviso prévio após o prazo de validade. "
        "A produção inicia somente após a aprovação da arte pelo cliente. "
        "Este orçamento não constitui reserva de mercadoria."
    )
