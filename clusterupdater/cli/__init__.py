"""Command-line interface for clusterupdater."""
