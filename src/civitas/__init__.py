"""civitas: on-chain event indexer for the Civitas agreement contracts.

The package watches the clone factory for newly deployed agreements, decodes the
event logs each clone emits, classifies them into a normalized transaction
taxonomy, and persists the results idempotently into a relational store.
"""
