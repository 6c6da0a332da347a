"""Alembic environment for the follow-up and scheduler schema.

The database URL comes from the application settings (``MYSQL_URL``), so
migrations always target the same store the API and worker use.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from recruitflow_core.config import get_settings
from recruitflow_core.domain.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """URL from ``sqlalchemy.url`` when set (``alembic -x``/ini), else settings."""
    return config.get_main_option("sqlalchemy.url") or get_settings().mysql_url


def _configure_kwargs(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        # Status columns are SQL enums; value changes must show up in autogenerate
        "compare_type": True,
        # SQLite (local runs) can only ALTER through table copies
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    url = get_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    url = get_url()
    connectable = create_engine(url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs(url))

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
