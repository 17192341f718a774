"""
Integration Tests Package for the Parking Billing Engine

These tests run the billing service end to end against real stores:
1. In-memory store and sink with a fixed clock
2. SQLAlchemy store and ledger on in-memory SQLite
3. Command handler and command line entry point
"""
