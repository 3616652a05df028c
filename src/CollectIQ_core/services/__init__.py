"""Domain services: pricing fusion and authenticity signals."""
