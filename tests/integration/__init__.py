"""Integration tests for the voting API against a live PostgreSQL.

These exercise the asyncpg repositories directly: schema creation, the
cross-role name lock, and the conditional update that gates vote casting.

All tests require a reachable PostgreSQL (see ``POSTGRES_*`` variables).
"""
