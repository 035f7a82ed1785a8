from logging.config import fileConfig

from alembic import context

from app.db import DATABASE_URL, Base, engine
from app.models.clubready_config import ClubReadyConfig  # noqa: F401
from app.models.customer import Customer  # noqa: F401
from app.models.package import Package  # noqa: F401
from app.models.payment_log import PaymentLog  # noqa: F401
from app.models.transaction import Transaction  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
