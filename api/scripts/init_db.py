"""
Script para inicializar la base de datos local sin pasar por Alembic.

Util en desarrollo: crea el esquema de leads (si no es public) y las
tablas del pipeline que falten. En produccion usar `alembic upgrade head`.
"""
import asyncio
import sys
from pathlib import Path

from loguru import logger
from sqlalchemy import text

_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

from app.core.config import settings
from app.infrastructure.database.session import close_db, get_engine, init_db
from app.infrastructure.external.lead_sync.types import quote_ident


async def main():
    """Funcion principal para inicializar la base de datos."""
    logger.info("Inicializando base de datos...")

    try:
        if settings.LEADS_SCHEMA != "public":
            async with get_engine().begin() as conn:
                await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quote_ident(settings.LEADS_SCHEMA)}"))

        await init_db()
        logger.success("Base de datos inicializada correctamente")
    except Exception as e:
        logger.error(f"Error al inicializar base de datos: {e}")
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
