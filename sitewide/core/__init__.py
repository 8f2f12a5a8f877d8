"""
Core utilities shared by the database and aggregation layers:
exceptions, logging, validation, paths and configuration.
"""
