"""Pipeline activity functions.

Each module implements one step the orchestrator delegates to.
"""
