"""Database pool, table names and schema migrations."""

from nflsim.db.pool import close_pool, get_pool

__all__ = ["get_pool", "close_pool"]
