"""
TenderDraftPro — Parallel batch generation for tender response documents

Drafts work package content by sending bounded-size batches to the
generation backend with bounded concurrency, rate-limit backoff and
per-document progress reporting.
"""

__version__ = "1.0.0"
__author__ = "TenderDraftPro"
