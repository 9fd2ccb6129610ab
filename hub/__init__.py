"""Backend package: DB models, storage, pipelines, API.

Problems arrive from feeds or direct submission, are enriched once by the
text classifier, and are then voted on, clustered, matched to experts and
exported.
"""
