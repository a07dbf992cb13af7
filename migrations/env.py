import logging
from logging.config import fileConfig

from sqlalchemy.engine import make_url

from alembic import context

from whatsapp_core.config import settings
from whatsapp_core.database import create_db_engine, normalize_db_url
from whatsapp_core.models import Base

config = context.config

if config.config_file_name:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata

url = normalize_db_url(settings.DATABASE_URL or "")
if not url:
    raise RuntimeError("DATABASE_URL is not set. Set it in .env or environment for migrations.")
config.set_main_option("sqlalchemy.url", url)

# SQLite cannot ALTER most constraints in place; batch mode rebuilds the table instead.
is_sqlite = make_url(url).get_backend_name() == "sqlite"


def run_migrations_offline() -> None:
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=is_sqlite,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    logger.info("Alembic target: %s", make_url(url).render_as_string(hide_password=True))
    # Same engine setup as the server, so SQLite gets its foreign-key pragma.
    engine = create_db_engine(url)
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                render_as_batch=is_sqlite,
                compare_type=True,
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
