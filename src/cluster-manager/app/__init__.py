"""Cluster Manager service."""
