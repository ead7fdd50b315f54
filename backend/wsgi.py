# backend/wsgi.py
from quotedesk import create_app

app = create_app()
