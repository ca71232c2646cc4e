"""
Shard consolidation system.

Fans a single read query out to every source node in parallel, merges
the rows in memory, then copies them into one destination table inside
a single batched transaction.
"""

__version__ = "1.0.0"
