"""ghstats: rate-limit aware GitHub statistics client."""

__version__ = "1.0.0"
