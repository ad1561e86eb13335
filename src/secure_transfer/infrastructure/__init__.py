"""Infrastructure: ledger adapters, caches and the Redis idempotency store."""
