"""Local persistence for Health Genie.

Modules:
    database       - SQLite engine, table definitions, ordered schema migrations
    sample_store   - Capacity-bounded sample store and score table
    outbound_queue - Retry-bounded outbound mutation queue
"""
