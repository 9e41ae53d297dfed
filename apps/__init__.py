"""Domain apps of the equipment rental service."""
