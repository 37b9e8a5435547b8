"""GitHub REST API access: transport, resource descriptors and fetchers."""
