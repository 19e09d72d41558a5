"""Chat history data models."""
