"""
Infrastructure

This package contains:
- error_handling: error taxonomy and retry with backoff
- data_validation: schema checks for persisted metric rows
- metrics_store: SQL and Supabase metric stores and the batch writer
"""
