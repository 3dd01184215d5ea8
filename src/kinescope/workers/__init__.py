"""Bus-connected workers."""
