"""Media inspection and background music preparation."""
