from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from directory_billing.core import config
from directory_billing.db.capabilities import resolve_capabilities

DATABASE_URL = config.DATABASE_URL

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Resolved once per process; passed explicitly to the lifecycle services
capabilities = resolve_capabilities(engine)
