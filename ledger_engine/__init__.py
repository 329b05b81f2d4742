"""
Ledger Engine - Source Package

Keeps per-account balances (bank accounts, credit cards, cash wallets)
correct while transactions are created, edited, deleted or backfilled.

DESIGN PRINCIPLES:
1. The ledger engine is the only writer of balance columns
2. Every edit or delete reverses the old effect before applying a new one
3. Reversal and reapply commit together or not at all
4. Balances can always be recomputed from the transaction log
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Engine Team"
