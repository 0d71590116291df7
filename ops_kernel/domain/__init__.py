"""Pure domain layer: payload DTOs, results, findings, costing, clock and settings."""
