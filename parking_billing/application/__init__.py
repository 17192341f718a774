"""Application layer: billing use cases, command handler and DTOs"""
