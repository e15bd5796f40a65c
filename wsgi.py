"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi seed-workflows
    flask --app wsgi issue-token --user-id 1 --role admin
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
"""

from taskhub import create_app

app = create_app()
