"""
Expense Ledger - Source Package

Records a user's financial obligations from three origination paths:
manual entry (optionally recurring or split into installments) and
scanned NFC-e fiscal receipts reached through their QR-code URL.

DESIGN PRINCIPLES:
1. Money is Decimal, never float
2. Extraction is best-effort, validation is strict
3. Multi-record writes compensate on failure
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Ledger Team"
