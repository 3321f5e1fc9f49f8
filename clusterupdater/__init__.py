"""clusterupdater - unattended upgrade controller for OpenShift clusters."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("clusterupdater")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
