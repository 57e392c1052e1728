"""
Retail Kernel - store-scoped inventory allocation

Tracks how much of each inventory batch is allocated to which store and
moves that allocation between stores through an approval workflow:
- Per-store allocation ledgers embedded on each batch
- Request -> approve -> confirm transfer state machine
- FIFO consumption of store allocations at sale time
- Optimistic concurrency on every ledger write
- Full auditability via hash chain
"""

__version__ = "0.1.0"
