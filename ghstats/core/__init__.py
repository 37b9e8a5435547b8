"""Core Application Layer: Orchestrates use cases and application logic.

Connects the domain layer with the infrastructure layer.
Contains the statistics aggregator, the client facade and the command handler.
"""
