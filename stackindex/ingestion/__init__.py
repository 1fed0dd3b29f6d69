"""Ingestion package for offline import jobs.

Contains the importers that read stack dumps and populate the index.
See import_dump.py for the goroutine dump pipeline.
"""
