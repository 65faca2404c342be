"""Core building blocks shared across the usergate package."""
