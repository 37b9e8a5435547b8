"""Caching Service Implementation.

Provides the in-memory TTL implementation of the CacheService interface,
with lazy expiry and per-key generations.
Bounded Context: Cache Management
"""
