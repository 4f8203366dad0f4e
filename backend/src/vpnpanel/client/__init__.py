"""Client-facing facade over the domain services."""
