"""Stackyard - deploy git repositories as services on a Docker swarm stack.

Stackyard is a small deployment control plane. Give it a git URL and it
fetches the source, builds and publishes a container image, declares the
application in a compose-style manifest and asks the orchestrator to
converge on it, streaming progress to every connected client.

Main features:
- Pipeline controller driving one job per deployment request
- Manifest store editing the stack document in place
- Status event bus with lag notices for slow subscribers
- HTTP and WebSocket control plane
"""

from stackyard.config.loader import ConfigLoader
from stackyard.lib.errors import ConfigError, StackyardError, ValidationError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigLoader",
    "ConfigError",
    "StackyardError",
    "ValidationError",
]
