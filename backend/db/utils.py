from sqlalchemy.ext.asyncio import AsyncSession


def _normalize_db_url(url: str | None) -> str | None:
    # Neon often returns "postgres://..."; asyncpg needs "postgresql+asyncpg://..."
    if not url:
        return None
    if url.startswith("postgres://",):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def is_sqlite_url(url: str | None) -> bool:
    return bool(url) and url.startswith("sqlite")


def engine_options(url: str | None) -> dict:
    # sqlite (local runs and tests) needs a longer busy timeout so concurrent writers queue instead of failing
    if is_sqlite_url(url):
        return {"connect_args": {"timeout": 30}}
    return {"pool_pre_ping": True}


def is_postgres(session: AsyncSession) -> bool:
    return session.get_bind().dialect.name == "postgresql"
