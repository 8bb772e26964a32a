"""Small helpers shared across prpal_core."""
