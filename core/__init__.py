"""Core module - configuration and observability shared by every pipeline stage.

Domain logic (ingestion, derivation, dispatch, warehouse postings) lives in its
own top-level package; ERP/feed HTTP specifics belong in /connectors/.
"""

__version__ = "1.0.0"
