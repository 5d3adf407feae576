"""Persistence package for indexed contracts and their normalized transactions.

Tables are defined with SQLAlchemy Core in :mod:`civitas.store.sql`; the store
classes wrap keyed upserts so that redelivered logs overwrite instead of
duplicating rows.
"""
