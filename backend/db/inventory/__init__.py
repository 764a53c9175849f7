"""
Stock ledgers (append-only, never updated or deleted).

Models:
- InventoryRecord (incoming batch: quantity + unit cost at the time of restock)
- DistributorOrderRecord (outgoing allocation of a product to a distributor)

Available quantity of a product = sum(incoming) - sum(outgoing).
"""
