"""Background workers for the credit engine."""
