"""
Store capability descriptor.

Resolved once from the engine at process start and handed to the services
that need it, instead of probing the database on every call.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreCapabilities:
    dialect: str
    supports_row_locks: bool = False
    supports_skip_locked: bool = False

    def lock(self, query, skip_locked: bool = False):
        """Apply SELECT ... FOR UPDATE when the store supports it."""
        if not self.supports_row_locks:
            return query
        if skip_locked and self.supports_skip_locked:
            return query.with_for_update(skip_locked=True)
        return query.with_for_update()


def resolve_capabilities(engine: Engine) -> StoreCapabilities:
    """Build the descriptor from the engine's dialect."""
    dialect = engine.dialect.name
    if dialect == "postgresql":
        caps = StoreCapabilities(dialect=dialect, supports_row_locks=True, supports_skip_locked=True)
    elif dialect in ("mysql", "mariadb"):
        caps = StoreCapabilities(dialect=dialect, supports_row_locks=True, supports_skip_locked=True)
    else:
        caps = StoreCapabilities(dialect=dialect)

    logger.info(
        f"Store capabilities resolved: dialect={caps.dialect}, "
        f"row_locks={caps.supports_row_locks}, skip_locked={caps.supports_skip_locked}"
    )
    return caps
