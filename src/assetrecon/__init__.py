"""Assetrecon - semantic reconciliation of legacy ERP inventories.

This package matches free-text legacy inventory rows against a managed asset
catalog using text embeddings and vector similarity search, with a
job-oriented workflow for human or threshold-based confirmation.
"""

__version__ = "0.1.0"
