"""Persistence infrastructure: engine wiring and SQLModel repositories."""
