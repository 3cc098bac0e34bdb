"""
Ad Metrics Layer

Cached, coalesced metrics from two ad platforms:
1. Hot (Redis) and warm (PostgreSQL) cache tiers with a freshness policy
2. Concurrent social and search fetches with partial-failure merging
3. Stale-while-refresh background updates and scheduled warming
"""

__version__ = "0.1.0"
