"""Alembic environment for the boards and items schema.

The database URL always comes from idea_board settings (``DATABASE_URL``)
so migrations and the running service agree on the target.
"""

import os
import sys
from logging.config import fileConfig

from alembic import context

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from idea_board.db.base import Base, create_db_engine, get_database_url
from idea_board.db.models import BoardModel, ItemModel  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(url: str, **kwargs) -> None:
    # SQLite cannot ALTER most columns in place; batch mode rebuilds the table.
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    url = get_database_url()
    _configure(url, url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations through the same engine factory the service uses."""
    url = get_database_url()
    engine = create_db_engine(url)
    try:
        with engine.connect() as connection:
            _configure(url, connection=connection)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
