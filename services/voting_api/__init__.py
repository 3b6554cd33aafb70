"""
Voting API service.

Voter and candidate registration, bearer-token login, one vote per voter and
per-candidate tallies over PostgreSQL.
"""

__version__ = '1.0.0'
