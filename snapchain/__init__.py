# MIT License
# Copyright (c) 2025 Hashborn

"""
SnapChain node: storage-log ledger and state snapshot engine.
"""

__version__ = "0.1.0"
