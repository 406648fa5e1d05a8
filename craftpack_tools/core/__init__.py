"""Core components: hashing, caching, scanning, export and install."""
