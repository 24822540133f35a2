"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Endpoint paths and client defaults
- exceptions: Custom exception hierarchy
- request: Resilient request client (timeout, retry, cancellation)
"""
