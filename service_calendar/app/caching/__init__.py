"""
Calendar caching package.

Provides a key-value store contract with Redis and in-memory backends, and
a cache-aside service that never lets a store failure reach the caller.
"""
