# backend/wsgi.py
from co2ledger import create_app

app = create_app()
