"""
Console Service package for the Splitledger Console.

This package serves cached, read-mostly views of the expense backend to
administrators. It provides:

- app.main: API surface for balances, expenses, groups, users and activity.
- app.caching: Keyed resource caches (coalescing, LRU bound, rollback).
- app.domain: Per-domain caches and their backend models.
- app.adapters: HTTP client for the expense backend.
"""
