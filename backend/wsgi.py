# backend/wsgi.py
from tvanamm import create_app

app = create_app()
