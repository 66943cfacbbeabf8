"""Database configuration and initialization."""
import logging
import time

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

logger = logging.getLogger(__name__)

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }

    if database_uri.startswith('sqlite'):
        # Worker threads share the file database
        engine_options['connect_args'] = {'check_same_thread': False, 'timeout': 15}
    else:
        engine_options['pool_size'] = app.config.get('DB_POOL_SIZE', 10)
        engine_options['max_overflow'] = app.config.get('DB_MAX_OVERFLOW', 20)

    engine = create_engine(database_uri, **engine_options)

    if engine.dialect.name == 'sqlite':
        event.listen(engine, 'connect', _enable_sqlite_foreign_keys)

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def get_session():
    """Get database session."""
    return db_session


def get_engine():
    """Get the engine created by init_db."""
    return engine


def create_tables():
    """Create every table known to the models."""
    import minierp.models  # noqa: F401  (registers the mappers)
    Base.metadata.create_all(bind=engine)


def drop_tables():
    """Drop every table known to the models."""
    import minierp.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def ping_database():
    """Run a trivial query, raising if the database is unreachable."""
    with engine.connect() as connection:
        return connection.execute(text("SELECT 1")).scalar()


def wait_for_database(retries=3, delay=2.0):
    """
    Startup supervisor: retry the first connection before serving requests.

    Returns:
        True once the database answers, False after the last failed attempt.
    """
    for attempt in range(1, retries + 1):
        try:
            ping_database()
            logger.info(f"[DB] Connected ({engine.url.render_as_string(hide_password=True)})")
            return True
        except OperationalError as e:
            logger.error(f"[DB] Connection attempt {attempt}/{retries} failed: {e}")
            if attempt < retries:
                time.sleep(delay)
    return False


def dispose_engine():
    """Close pooled connections at shutdown."""
    if db_session is not None:
        db_session.remove()
    if engine is not None:
        engine.dispose()
