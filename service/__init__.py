"""Long-running worker host."""
