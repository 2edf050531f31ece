"""Timeseries analytics over one page's monthly history.

Trends, best/worst months, anomaly detection, metric correlation, engagement
rates and cross-page rankings.
"""
