"""Alerting, alert recipients, artifact upload slots, authorization, route matching and throttling for a Home Assistant fleet control plane."""

__version__ = "0.1.0"