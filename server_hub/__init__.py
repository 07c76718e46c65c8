"""Server Hub presence and notification delivery service.

Ensures the local ``server_hub`` package is imported as a regular package.
"""
