"""SQL statements used by the asyncpg-backed repositories."""
