"""
Settlement Kernel - Obligation Store and shared infrastructure

Durable off-chain mirror of recurring payment obligations with:
- Append-only settlement attempt records
- Notification intents for payer and payee
- Deterministic clock injection
- Typed, coded exceptions
- Structured JSON logging
"""

__version__ = "0.1.0"
