"""Cleaning utilities for the pipeline.

Provides functions to normalize export field names, parse metric cells and
validate rows into immutable Snapshots before they reach the dataset.
"""
