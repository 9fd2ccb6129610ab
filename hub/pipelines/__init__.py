"""Pipelines for feed ingestion, submission, clustering and expert matching.

Each step is callable on its own with an explicit session so the API and
batch scripts share the same code path.
"""
