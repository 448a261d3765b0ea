"""Container-backed cluster nodes, networks and images managed through the docker and podman CLIs."""

__version__ = "0.1.0"