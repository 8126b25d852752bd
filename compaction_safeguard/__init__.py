# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Compaction Safeguard - guards agent context compaction against losing tool
failures and oversized messages.
"""

__version__ = "0.1.0"
