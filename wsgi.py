"""
WSGI entry point (gunicorn) and Flask CLI target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi create-admin admin@example.org 'S3cret!'
"""

from app import create_app

app = create_app()
