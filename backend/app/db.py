import os
from urllib.parse import quote_plus

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()
engine = None
SessionLocal = None

# SQLite has no schemas; module tables are created unqualified there.
SQLITE_SCHEMA_MAP = {"allowance": None, "auth": None, "notifications": None}


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc


def _build_connection_url(login_env: str, password_env: str, database_override: str | None = None) -> str:
    explicit_url = os.getenv("DATABASE_URL", "").strip()
    if explicit_url and not database_override:
        return explicit_url

    driver = os.getenv("SQLSERVER_DRIVER", "")
    host = os.getenv("SQLSERVER_HOST", "")
    port = os.getenv("SQLSERVER_PORT", "")
    database = database_override or os.getenv("SQLSERVER_DB", "")
    user = os.getenv(login_env, "")
    password = os.getenv(password_env, "")

    missing = [key for key, value in {
        "SQLSERVER_HOST": host,
        "SQLSERVER_PORT": port,
        "SQLSERVER_DB": database,
        "SQLSERVER_DRIVER": driver,
        login_env: user,
        password_env: password,
    }.items() if not value]
    if missing:
        raise RuntimeError(f"Missing database configuration: {', '.join(missing)}")

    driver_encoded = quote_plus(driver)
    password_encoded = quote_plus(password)
    return (
        f"mssql+pyodbc://{user}:{password_encoded}@{host}:{port}/{database}"
        f"?driver={driver_encoded}&Encrypt=yes&TrustServerCertificate=yes"
    )


def BuildUserConnectionUrl() -> str:
    return _build_connection_url("SQLSERVER_USER_LOGIN", "SQLSERVER_USER_PASSWORD")


def BuildAdminConnectionUrl(database_override: str | None = None) -> str:
    return _build_connection_url("SQLSERVER_ADMIN_LOGIN", "SQLSERVER_ADMIN_PASSWORD", database_override)


def CreateEngineForUrl(url: str, pooled: bool = True):
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            execution_options={"schema_translate_map": SQLITE_SCHEMA_MAP},
        )
    if not pooled:
        return create_engine(url, pool_pre_ping=True)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=_read_int_env("SQLALCHEMY_POOL_SIZE", 10),
        max_overflow=_read_int_env("SQLALCHEMY_MAX_OVERFLOW", 20),
        pool_timeout=_read_int_env("SQLALCHEMY_POOL_TIMEOUT", 60),
    )


def _ensure_engine():
    global engine, SessionLocal
    if engine is None:
        engine = CreateEngineForUrl(BuildUserConnectionUrl())
        SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def GetDb():
    if SessionLocal is None:
        _ensure_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
