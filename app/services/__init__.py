"""Service layer for the agency billing anchor engine."""
