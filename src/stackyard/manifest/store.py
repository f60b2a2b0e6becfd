"""Manifest store: the declarative stack document as the system's state.

The manifest document is both the durable record of every deployed
application and the input handed to the orchestrator. Every mutation reads
the whole document, edits one service block as text and writes the whole
document back atomically. Mutations are serialized by a lock shared by all
stores pointing at the same file within the process.
"""

from __future__ import annotations

import os
import tempfile
import textwrap
import threading
from pathlib import Path

import yaml

from stackyard.lib.errors import (
    AlreadyExistsError,
    ManifestError,
    NotFoundError,
    ValidationError,
)
from stackyard.lib.logging_config import get_logger
from stackyard.manifest.render import render_manifest, render_service_block
from stackyard.manifest.scanner import (
    ManifestLayout,
    find_replicas_line,
    replace_replicas,
    scan,
)
from stackyard.models.app import APP_NAME_PATTERN, ENV_KEY_PATTERN, ApplicationSpec
from stackyard.models.config import RegistryConfig, ResourceLimits, RoutingConfig
from stackyard.models.manifest import ServiceBlock

logger = get_logger(__name__)

_path_locks: dict[Path, threading.RLock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    """Return the process-wide mutation lock for a manifest path."""
    key = path.resolve()
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _path_locks[key] = lock
        return lock


class ManifestStore:
    """Single source of truth for desired state.

    All operations are synchronous and block only on file I/O and the
    mutation lock; none of them talks to the orchestrator.

    Example:
        >>> store = ManifestStore(Path("stack.yml"))
        >>> store.add(ApplicationSpec(name="demo", sourceURL="https://x/demo.git"))
        >>> store.exists("demo")
        True
        >>> store.set_replicas("demo", 3)
        >>> store.remove("demo")
    """

    def __init__(
        self,
        path: Path | str,
        *,
        registry: RegistryConfig | None = None,
        resources: ResourceLimits | None = None,
        routing: RoutingConfig | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            path: Manifest document path
            registry: Registry used to derive image references
            resources: Default resource limits for new blocks
            routing: Routing configuration for new blocks
        """
        self.path = Path(path)
        self.registry = registry or RegistryConfig()
        self.resources = resources or ResourceLimits()
        self.routing = routing or RoutingConfig()
        self._lock = _lock_for(self.path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self) -> str:
        """Return the current document text ("" if it does not exist yet)."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except UnicodeDecodeError as exc:
            raise ManifestError(str(self.path), f"not valid UTF-8: {exc}") from exc
        except OSError as exc:
            raise ManifestError(str(self.path), f"failed to read: {exc}") from exc

    def _layout(self) -> ManifestLayout:
        return scan(self.read(), source=str(self.path))

    def exists(self, name: str) -> bool:
        """Return True iff a service block keyed exactly by ``name`` exists."""
        return self._layout().find(name) is not None

    def names(self) -> list[str]:
        """Return the service keys in document order."""
        return [block.name for block in self._layout().blocks]

    def get(self, name: str) -> ServiceBlock:
        """Parse and return the service block keyed by ``name``.

        Raises:
            NotFoundError: If no such block exists
            ManifestError: If the block text is not valid YAML
        """
        layout = self._layout()
        extent = layout.find(name)
        if extent is None:
            raise NotFoundError(str(self.path), name)
        return self._parse_block(name, layout.block_text(extent))

    def list_blocks(self) -> list[ServiceBlock]:
        """Parse every service block in document order."""
        layout = self._layout()
        return [
            self._parse_block(extent.name, layout.block_text(extent))
            for extent in layout.blocks
        ]

    def _parse_block(self, name: str, text: str) -> ServiceBlock:
        try:
            parsed = yaml.safe_load(textwrap.dedent(text))
        except yaml.YAMLError as exc:
            raise ManifestError(
                str(self.path), f"service '{name}' is not valid YAML: {exc}"
            ) from exc
        body = parsed.get(name) if isinstance(parsed, dict) else None
        return ServiceBlock.from_compose(name, body or {})

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def ensure_document(self) -> None:
        """Create the manifest with its boilerplate if it does not exist."""
        with self._lock:
            if not self.path.exists():
                logger.info(f"Creating manifest document at {self.path}")
                self._write(render_manifest(self.routing, self.registry))

    def add(
        self,
        spec: ApplicationSpec,
        replicas: int = 1,
        image: str | None = None,
    ) -> None:
        """Append a service block declaring ``spec``.

        Existing content is preserved byte-for-byte; the block is inserted
        at the end of the services section.

        Args:
            spec: Application to declare
            replicas: Initial replica count
            image: Image reference; derived from the registry when omitted

        Raises:
            AlreadyExistsError: If a block with the same key exists
            ValidationError: If the spec cannot be rendered safely
        """
        _check_renderable(spec)
        _check_replicas(replicas)
        image = image or spec.image_ref(self.registry.url, self.registry.tag)

        with self._lock:
            text = self.read()
            layout = scan(text, source=str(self.path))
            if layout.find(spec.name) is not None:
                raise AlreadyExistsError(str(self.path), spec.name)

            block = render_service_block(
                spec,
                image=image,
                replicas=replicas,
                resources=self.resources,
                routing=self.routing,
                indent=layout.service_indent,
            )
            lines = list(layout.lines)
            if layout.services_line is None:
                if not lines:
                    lines = render_manifest(self.routing, self.registry).splitlines(
                        keepends=True
                    )
                else:
                    _terminate_last_line(lines, len(lines))
                    lines.append("services:\n")
                insert_at = len(lines)
            else:
                insert_at = layout.insertion_point()
                _terminate_last_line(lines, insert_at)

            lines.insert(insert_at, block)
            self._write("".join(lines))
        logger.info(f"Added service '{spec.name}' ({image}, replicas={replicas})")

    def remove(self, name: str) -> None:
        """Delete the full extent of the block keyed by ``name``.

        Raises:
            NotFoundError: If no such block exists
        """
        with self._lock:
            layout = scan(self.read(), source=str(self.path))
            extent = layout.find(name)
            if extent is None:
                raise NotFoundError(str(self.path), name)
            lines = layout.lines[: extent.start] + layout.lines[extent.end :]
            self._write("".join(lines))
        logger.info(f"Removed service '{name}'")

    def set_replicas(self, name: str, replicas: int) -> None:
        """Rewrite the ``deploy.replicas`` value of the block of ``name``.

        Raises:
            NotFoundError: If the block or its deploy.replicas field is absent
            ValidationError: If ``replicas`` is negative
        """
        _check_replicas(replicas)
        with self._lock:
            layout = scan(self.read(), source=str(self.path))
            extent = layout.find(name)
            if extent is None:
                raise NotFoundError(str(self.path), name)

            index = find_replicas_line(layout, extent)
            rewritten = (
                replace_replicas(layout.lines[index], replicas)
                if index is not None
                else None
            )
            if index is None or rewritten is None:
                raise NotFoundError(str(self.path), name, "no 'deploy.replicas' field")
            lines = list(layout.lines)
            lines[index] = rewritten
            self._write("".join(lines))
        logger.info(f"Set replicas of '{name}' to {replicas}")

    def _write(self, text: str) -> None:
        """Write the whole document atomically (temp file + rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise ManifestError(str(self.path), f"failed to write: {exc}") from exc


def _terminate_last_line(lines: list[str], upto: int) -> None:
    """Ensure the line before ``upto`` ends with a newline."""
    if upto > 0 and not lines[upto - 1].endswith("\n"):
        lines[upto - 1] += "\n"


def _check_replicas(replicas: int) -> None:
    if isinstance(replicas, bool) or not isinstance(replicas, int) or replicas < 0:
        raise ValidationError("replicas", f"must be a non-negative integer, got {replicas!r}")


def _check_renderable(spec: ApplicationSpec) -> None:
    if not APP_NAME_PATTERN.match(spec.name):
        raise ValidationError(
            "name",
            f"'{spec.name}' is not a valid DNS label "
            "(lowercase letters, digits and '-', at most 63 characters)",
        )
    for key in spec.env:
        if not ENV_KEY_PATTERN.match(key):
            raise ValidationError("env", f"invalid environment variable name: {key!r}")
