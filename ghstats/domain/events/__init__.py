"""Domain Event definitions.

Represents significant occurrences during API calls (attempts, retries,
deferrals) that listeners such as loggers or metrics sinks can react to.
"""
