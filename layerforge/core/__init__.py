"""Core primitives: hashing, the working tree, and layer serialization."""
