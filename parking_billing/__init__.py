"""
Parking Billing Engine

Tracks a vehicle's stay, computes the fee under a tiered pricing policy,
takes cash payment with exact change and records the resulting transaction.
"""

__version__ = "1.0.0"
