"""
Configuracion de Alembic para migraciones de base de datos.

- Usa la URL de base de datos desde settings (config.py)
- Importa los modelos del pipeline para autogenerate
- Las migraciones corren sincronas con psycopg (asyncpg se reemplaza)
"""
import sys
from pathlib import Path
from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

# Agregar el directorio raiz al path para imports
API_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(API_DIR))

# Importar configuracion y modelos
from app.core.config import settings
from app.infrastructure.database.session import Base
import app.infrastructure.database.models  # noqa: F401 registra los modelos

# Alembic Config object
config = context.config

# Migraciones sincronas con psycopg (psycopg3)
db_url = settings.effective_database_url.replace("+asyncpg", "+psycopg")
config.set_main_option("sqlalchemy.url", db_url)

# Configurar logging desde alembic.ini
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Metadata de los modelos para autogenerate
target_metadata = Base.metadata


def include_object(obj, name, type_, reflected, compare_to):
    """
    Las columnas de leads agregadas por la reconciliacion de schema no
    existen en el modelo; autogenerate no debe proponer borrarlas.
    """
    if type_ == "column" and reflected and compare_to is None:
        return getattr(obj, "table", None) is None or obj.table.name != settings.LEADS_TABLE
    return True


def run_migrations_offline() -> None:
    """
    Ejecuta migraciones en modo 'offline'.

    Genera SQL sin conectarse a la base de datos.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Conecta a la base de datos y ejecuta las migraciones directamente."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            # Comparar tipos de columnas para detectar cambios
            compare_type=True,
            include_object=include_object,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
