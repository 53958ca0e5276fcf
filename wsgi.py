"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db init       # first time only (creates migrations/)
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi seed-users
    flask --app wsgi issue-token qa.manager@acme-plant.com
"""

from ncr_tracker import create_app

app = create_app()
