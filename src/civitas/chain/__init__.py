"""Chain access, ABI registry, and event decoding."""
