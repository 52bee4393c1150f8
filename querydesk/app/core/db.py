import logging

from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, create_engine, Session, text

from querydesk.app.core.config import settings
from querydesk.app.core.security import redact_secrets

logger = logging.getLogger(__name__)

connect_args = {}
database_url = settings.get_database_url()
if database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

def create_db_if_not_exists():
    if not database_url.startswith("mysql"):
        return
    try:
        url = make_url(database_url)
        db_name = url.database

        # 'mysql' always exists, so it is safe to connect there to issue CREATE DATABASE
        root_url = url.set(database="mysql")

        tmp_engine = create_engine(root_url, echo=settings.SQL_ECHO)
        try:
            with tmp_engine.connect() as conn:
                conn.execute(text(f"CREATE DATABASE IF NOT EXISTS `{db_name}`"))
                logger.info(f"Database {db_name} ensured.")
        finally:
            tmp_engine.dispose()
    except SQLAlchemyError as e:
        logger.warning(f"Could not check/create database: {redact_secrets(str(e))}")

engine = create_engine(database_url, echo=settings.SQL_ECHO, connect_args=connect_args)

def create_db_and_tables():
    # Register every table on SQLModel.metadata before create_all
    import querydesk.app.models.audit  # noqa: F401
    import querydesk.app.models.datasource  # noqa: F401
    import querydesk.app.models.execution  # noqa: F401
    import querydesk.app.models.saved_query  # noqa: F401
    import querydesk.app.models.schema_cache  # noqa: F401

    create_db_if_not_exists()
    SQLModel.metadata.create_all(engine)

def get_session():
    with Session(engine) as session:
        yield session
