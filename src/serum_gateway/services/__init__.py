"""Services: caches, own-order index, cancel targeting, transaction engine and the exchange facade."""
