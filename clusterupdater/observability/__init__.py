"""Logging and metrics for clusterupdater."""
