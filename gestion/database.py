"""Database configuration and initialization."""
from flask import current_app, has_app_context
from sqlalchemy import create_engine, text, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Primary/foreign key type: BIGINT on PostgreSQL, INTEGER (rowid alias) on SQLite
IdType = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = None


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']

    if database_uri.startswith('sqlite'):
        # Single shared connection so in-memory databases survive between sessions
        engine = create_engine(
            database_uri,
            echo=app.config.get('SQLALCHEMY_ECHO', False),
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
    else:
        engine = create_engine(
            database_uri,
            echo=app.config.get('SQLALCHEMY_ECHO', False),
            pool_pre_ping=True,  # Enable connection health checks
            pool_size=10,
            max_overflow=20
        )

    db_session = scoped_session(
        sessionmaker(autoflush=False, bind=engine)
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


def create_all():
    """Create every table known to the models package."""
    import gestion.models  # noqa: F401 - registers the mappers
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every table known to the models package."""
    import gestion.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def apply_statement_timeout(session, timeout_ms=None):
    """
    Bound the current transaction's statements on PostgreSQL.

    SET LOCAL only lasts until the transaction ends, so this must be called
    at the start of every unit of work that needs it. Other dialects ignore it.
    timeout_ms defaults to the app's PURCHASE_TX_TIMEOUT_MS.
    """
    if timeout_ms is None and has_app_context():
        timeout_ms = current_app.config.get('PURCHASE_TX_TIMEOUT_MS')
    if not timeout_ms:
        return
    bind = session.get_bind()
    if bind.dialect.name != 'postgresql':
        return
    session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
