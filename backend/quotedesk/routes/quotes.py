# backend/quotedesk/routes/quotes.py
"""
Signed Quote Downloads

- GET /api/quotes/:token   stream the quote PDF a signed link points to

SECURITY:
- No actor headers: the signed, time-limited token IS the credential
- Tokens carry their own TTL; expired links return 410, tampered ones 404
"""

import io

from flask import Blueprint, jsonify, current_app, send_file

from ..errors import QuoteDeskError
from ..services.storage_service import get_artifact_store


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


@quotes_bp.get("/<token>")
def download_quote_route(token: str):
    try:
        store = get_artifact_store()
        key = store.resolve_token(token)
        data = store.get(key)
        return send_file(
            io.BytesIO(data),
            mimetype="application/pdf",
            as_attachment=True,
            download_name=f"orcamento-{key.rsplit('/', 1)[-1]}",
        )
    except QuoteDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to serve quote download")
        return jsonify({"error": "Internal server error"}), 500
