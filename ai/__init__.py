"""Analysis components backed by the external semantic service.

Each component takes a ``StructuredTextAnalyzer`` at construction and owns a
complete local fallback for when the service fails.
"""
