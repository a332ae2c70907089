"""Geometry, sampled series and error types shared by the pipeline."""
