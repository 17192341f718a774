"""Domain layer: money, pricing, tickets, fees, lifecycle, payments, pension"""
