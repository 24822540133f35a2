"""Pipeline orchestration.

- pipeline: Session-owning orchestrator for search, layer selection and export
"""
