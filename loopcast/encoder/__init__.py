"""Encoder command construction and process supervision."""
