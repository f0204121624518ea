"""Ingestion of visitor events from the DisplayForce API."""
