"""
Point-of-sale transaction core.

Packages:
- poscore.state: transaction state machine, validators, SQLite store
- poscore.pricing: rule-based pricing engine
- poscore.recovery: startup recovery of interrupted transactions
- poscore.config: pydantic configuration loaded from YAML and env
- poscore.logging: structured, stream-separated logging
- poscore.time: injectable clocks
"""

__version__ = "0.1.0"
