"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-demo
    flask --app wsgi issue-token admin@orderhub.example.com
"""

from orderhub import create_app

app = create_app()
