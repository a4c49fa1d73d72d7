"""Ingestion pipeline for generated lesson components."""
