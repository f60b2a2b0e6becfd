"""Declarative manifest store.

The manifest document declares every deployed application as a service
block; it is edited as text by the scanner/renderer pair behind
``ManifestStore``.
"""

from stackyard.manifest.scanner import BlockExtent, ManifestLayout, scan
from stackyard.manifest.store import ManifestStore

__all__ = [
    "BlockExtent",
    "ManifestLayout",
    "ManifestStore",
    "scan",
]
