"""
Unit Tests Package for the Parking Billing Engine

Each module covers one component in isolation; collaborators (Redis,
RabbitMQ, MongoDB) are replaced with unittest.mock objects.
"""
