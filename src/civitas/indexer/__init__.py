"""Factory polling, clone registration, and per-contract event synchronization."""
