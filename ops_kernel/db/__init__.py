"""Database layer: declarative base, column types and engine management."""
