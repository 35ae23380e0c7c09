"""Ostrich race wagering game: deterministic race engine, betting and bots."""
