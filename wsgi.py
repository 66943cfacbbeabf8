"""WSGI entry point for Gunicorn."""
import logging

from minierp import create_app
from minierp.database import wait_for_database

# Create the application instance
app = create_app()

# Refuse to serve until the database answers
if not wait_for_database(
    retries=app.config.get('DB_CONNECT_RETRIES', 3),
    delay=app.config.get('DB_CONNECT_RETRY_DELAY', 2)
):
    logging.getLogger(__name__).critical("[DB] Database unreachable, check DATABASE_URL or run 'flask init-db'")
    raise SystemExit(1)

if __name__ == "__main__":
    app.run()
