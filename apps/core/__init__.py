"""
Shared infrastructure: exceptions, structured logging, retry policy and
the cache service used for snapshot persistence.
"""
