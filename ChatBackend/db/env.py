from logging.config import fileConfig
import os
import re
import sys

from sqlalchemy import create_engine, pool
from alembic import context

# Ensure project root is on sys.path so `import ChatBackend...` works when CWD is ChatBackend/
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from ChatBackend.config import normalize_database_url  # noqa: E402  # also loads .env
from ChatBackend.database import Base  # noqa: E402
# Import all models so Alembic autogenerate can see tables in Base.metadata.
import ChatBackend.models  # noqa: E402,F401  # side-effect import

# Alembic Config object
config = context.config


# Prefer explicit alembic.ini URL, otherwise fall back to DATABASE_URL from env
def _get_migration_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        url = url.strip()
        # Support placeholder syntax like: sqlalchemy.url = ${DATABASE_URL}
        m = re.fullmatch(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}", url)
        if m:
            env_val = os.getenv(m.group(1)) or ""
            if env_val:
                return normalize_database_url(env_val)
        else:
            return normalize_database_url(url)

    return normalize_database_url(os.getenv("DATABASE_URL"))


# Configure logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


# Runs migrations in "offline" mode (generates SQL without a live DB connection)
def run_migrations_offline() -> None:
    context.configure(
        url=_get_migration_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


# Runs migrations in "online" mode (executes against a live DB connection).
def run_migrations_online() -> None:
    connectable = create_engine(_get_migration_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
