"""Remote sync for Health Genie.

Modules:
    coordinator - Single-flight upload/download with periodic, network-gated trigger
    dedup       - Conflict keys, batch deduplication, upsert SQL builder
    rows        - Local record ↔ remote row mapping
    summaries   - Per-day aggregates for the remote summary table
    network     - Network classification for the sync gate
"""
