"""
Append-only audit ledger over workflow actions, document creation and
verification attempts. No update or delete path exists.
"""
