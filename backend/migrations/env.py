"""Alembic environment for the UCR schema.

``alembic -x url=sqlite:///other.db upgrade head`` targets a database other
than the configured one.
"""

from logging.config import fileConfig

from alembic import context
from alembic.config import Config
from sqlalchemy import MetaData, create_engine, pool
from sqlalchemy.engine import Engine

from config import get_settings
from db.connection import install_sqlite_pragmas
from db.models import Base

config: Config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata: MetaData = Base.metadata

# the universal tables may be shared with other HERA services
VERSION_TABLE = "ucr_alembic_version"


def target_url() -> str:
    override: str | None = context.get_x_argument(as_dictionary=True).get("url")
    return override or get_settings().database.url


def configure_options(url: str) -> dict[str, object]:
    return {
        "target_metadata": target_metadata,
        "version_table": VERSION_TABLE,
        "compare_type": True,
        # SQLite has no ALTER CONSTRAINT; batch mode recreates the table
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url: str = target_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **configure_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url: str = target_url()
    engine: Engine = create_engine(url, poolclass=pool.NullPool)
    if url.startswith("sqlite"):
        install_sqlite_pragmas(engine)

    with engine.connect() as connection:
        context.configure(connection=connection, **configure_options(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
