"""Core types, contracts, errors and the event bus."""
