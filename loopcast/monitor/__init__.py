"""Now-playing detection for a running encoder."""
