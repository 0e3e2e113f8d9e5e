"""
Settlement Kernel

Reconciles off-chain marketplace state with blockchain callbacks:
- Store-backed distributed locks
- Idempotent, all-or-nothing settlement of confirmed chain events
- Referral commission and BDA tier promotion
- Decimal-only money arithmetic
"""

__version__ = "0.1.0"
