"""Ephemeris ingestion, frame transformation and derived-product stages."""
