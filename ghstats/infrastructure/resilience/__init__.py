"""API Resilience Implementations.

Contains services for tracking GitHub rate limits, retrying with exponential
backoff, and coalescing concurrent requests for the same resource.
Bounded Context: API Resilience
"""
