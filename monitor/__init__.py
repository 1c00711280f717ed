"""Metric ingestion and stage scheduling."""
