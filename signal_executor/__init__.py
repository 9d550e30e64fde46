"""
Webhook-driven perpetual-futures signal executor.

Receives strategy alerts declaring a desired position (LONG / SHORT / FLAT)
and reconciles the exchange account toward it with net-delta orders.
"""

__version__ = "1.0.0"
