"""Data models for clusterupdater: the ClusterVersion resource and process configuration."""
