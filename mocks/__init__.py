"""Mock providers for tests and offline runs."""
