"""Infrastructure layer: stores, sinks, configuration, clock and wiring"""
