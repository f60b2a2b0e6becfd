"""Unit tests for ManifestStore."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path

import pytest
import yaml

from stackyard.lib.errors import (
    AlreadyExistsError,
    ManifestError,
    NotFoundError,
    ValidationError,
)
from stackyard.manifest.scanner import scan
from stackyard.manifest.store import ManifestStore
from stackyard.models.app import ApplicationSpec
from stackyard.models.config import RegistryConfig, ResourceLimits, RoutingConfig

SpecFactory = Callable[..., ApplicationSpec]


def _block(text: str, name: str) -> str:
    layout = scan(text)
    extent = layout.find(name)
    assert extent is not None, f"{name} not declared"
    return layout.block_text(extent)


@pytest.mark.unit
class TestReads:
    """Tests for read-only queries."""

    def test_names_in_document_order(self, store: ManifestStore) -> None:
        """Service keys are listed in document order."""
        assert store.names() == ["traefik", "registry"]

    def test_exists_exact_match(self, store: ManifestStore) -> None:
        """exists() only matches whole keys."""
        assert store.exists("registry") is True
        assert store.exists("reg") is False

    def test_missing_document_reads_empty(self, temp_dir: Path) -> None:
        """A store over a missing file has no services."""
        store = ManifestStore(temp_dir / "missing.yml")

        assert store.read() == ""
        assert store.names() == []
        assert store.exists("demo") is False

    def test_get_parses_block(self, store: ManifestStore) -> None:
        """get() parses the block text back into a ServiceBlock."""
        block = store.get("traefik")

        assert block.name == "traefik"
        assert block.image == "traefik:v3.0"
        assert block.replicas == 1

    def test_get_unknown_raises(self, store: ManifestStore) -> None:
        """get() of an undeclared name raises NotFoundError."""
        with pytest.raises(NotFoundError, match="ghost"):
            store.get("ghost")

    def test_corrupt_document_raises(self, temp_dir: Path) -> None:
        """Duplicate keys surface as ManifestError."""
        path = temp_dir / "stack.yml"
        path.write_text("services:\n  a:\n    image: x\n  a:\n    image: y\n")

        with pytest.raises(ManifestError):
            ManifestStore(path).names()

    def test_invalid_utf8_raises_manifest_error(self, temp_dir: Path) -> None:
        """Undecodable bytes are reported as a manifest problem."""
        path = temp_dir / "stack.yml"
        path.write_bytes(b"services:\n  caf\xe9:\n    image: x\n")

        with pytest.raises(ManifestError, match="not valid UTF-8"):
            ManifestStore(path).read()


@pytest.mark.unit
class TestAdd:
    """Tests for appending service blocks."""

    def test_add_preserves_surrounding_bytes(
        self, store: ManifestStore, sample_manifest: str, make_spec: SpecFactory
    ) -> None:
        """Everything outside the new block is kept byte-for-byte."""
        split = sample_manifest.index("\nvolumes:")
        head, tail = sample_manifest[:split], sample_manifest[split:]

        store.add(make_spec("demo"))

        updated = store.read()
        assert updated.startswith(head)
        assert updated.endswith(tail)
        inserted = updated[len(head) : len(updated) - len(tail)]
        assert inserted.startswith("  demo:\n")

    def test_add_keeps_other_blocks_identical(
        self, store: ManifestStore, sample_manifest: str, make_spec: SpecFactory
    ) -> None:
        """Existing blocks are untouched, comments included."""
        store.add(make_spec("demo"))

        updated = store.read()
        for name in ("traefik", "registry"):
            assert _block(updated, name) == _block(sample_manifest, name)
        assert "# shared overlay for the router and every app" in updated

    def test_added_block_is_valid_compose(
        self, store: ManifestStore, make_spec: SpecFactory
    ) -> None:
        """The whole document still parses, with the new service declared."""
        store.add(make_spec("demo", env={"NODE_ENV": "production"}))

        document = yaml.safe_load(store.read())
        service = document["services"]["demo"]
        assert service["image"] == "localhost:5000/demo:latest"
        assert service["deploy"]["replicas"] == 1
        assert service["networks"] == ["stackyard_overlay"]
        assert service["environment"] == {"NODE_ENV": "production"}
        assert document["volumes"] == {"registry-data": {}}

    def test_labels_round_trip_to_spec(
        self, store: ManifestStore, make_spec: SpecFactory
    ) -> None:
        """The spec can be reconstructed from the block's labels."""
        spec = make_spec("demo", run_command="bun run serve", workdir="web")

        store.add(spec, replicas=2, image="registry.local/demo:latest")

        block = store.get("demo")
        assert block.replicas == 2
        assert block.image == "registry.local/demo:latest"
        assert block.labels["traefik.http.routers.demo.rule"] == "Host(`demo.localhost`)"
        assert block.labels["com.stackyard.image"] == "registry.local/demo:latest"
        rebuilt = block.to_spec()
        assert rebuilt.name == spec.name
        assert rebuilt.source_url == spec.source_url
        assert rebuilt.run_command == "bun run serve"
        assert rebuilt.workdir == "web"
        assert rebuilt.created_at == spec.created_at

    def test_add_uses_configured_limits_and_routing(
        self, manifest_path: Path, make_spec: SpecFactory
    ) -> None:
        """Resource limits and routing come from the store configuration."""
        store = ManifestStore(
            manifest_path,
            registry=RegistryConfig(url="registry.internal:5000"),
            resources=ResourceLimits(cpus="1.5", memory="1G"),
            routing=RoutingConfig(entrypoint="websecure", app_port=8080),
        )

        store.add(make_spec("demo"))

        service = yaml.safe_load(store.read())["services"]["demo"]
        assert service["image"] == "registry.internal:5000/demo:latest"
        assert service["deploy"]["resources"]["limits"] == {"cpus": "1.5", "memory": "1G"}
        labels = service["deploy"]["labels"]
        assert "traefik.http.routers.demo.entrypoints=websecure" in labels
        assert "traefik.http.services.demo.loadbalancer.server.port=8080" in labels

    def test_duplicate_add_leaves_document_unchanged(
        self, store: ManifestStore, sample_manifest: str, make_spec: SpecFactory
    ) -> None:
        """Adding an existing key fails without touching the file."""
        with pytest.raises(AlreadyExistsError):
            store.add(make_spec("registry"))

        assert store.read() == sample_manifest

    def test_invalid_name_leaves_document_unchanged(
        self, store: ManifestStore, sample_manifest: str, make_spec: SpecFactory
    ) -> None:
        """Names that are not DNS labels are rejected before writing."""
        with pytest.raises(ValidationError) as exc_info:
            store.add(make_spec("Bad_Name"))

        assert exc_info.value.field == "name"
        assert store.read() == sample_manifest

    def test_invalid_env_key_rejected(
        self, store: ManifestStore, make_spec: SpecFactory
    ) -> None:
        """Environment keys must be valid variable names."""
        with pytest.raises(ValidationError) as exc_info:
            store.add(make_spec("demo", env={"BAD-KEY": "1"}))

        assert exc_info.value.field == "env"

    def test_negative_replicas_rejected(
        self, store: ManifestStore, make_spec: SpecFactory
    ) -> None:
        """Replica counts must be non-negative."""
        with pytest.raises(ValidationError):
            store.add(make_spec("demo"), replicas=-1)

    def test_add_to_missing_document_creates_boilerplate(
        self, temp_dir: Path, make_spec: SpecFactory
    ) -> None:
        """The first add creates the document with its boilerplate services."""
        store = ManifestStore(temp_dir / "new" / "stack.yml")

        store.add(make_spec("demo"))

        document = yaml.safe_load(store.read())
        assert document["networks"]["stackyard_overlay"]["driver"] == "overlay"
        assert list(document["services"]) == ["traefik", "registry", "demo"]

    def test_add_to_document_without_services(
        self, temp_dir: Path, make_spec: SpecFactory
    ) -> None:
        """A services section is appended when the document lacks one."""
        path = temp_dir / "stack.yml"
        path.write_text('version: "3.8"')

        store = ManifestStore(path)
        store.add(make_spec("demo"))

        text = store.read()
        assert text.startswith('version: "3.8"\nservices:\n  demo:\n')
        assert list(yaml.safe_load(text)["services"]) == ["demo"]

    def test_add_matches_four_space_indentation(
        self, temp_dir: Path, make_spec: SpecFactory
    ) -> None:
        """New blocks follow the document's service indentation."""
        path = temp_dir / "stack.yml"
        path.write_text("services:\n    web:\n        image: nginx\n")

        store = ManifestStore(path)
        store.add(make_spec("demo"))

        assert store.names() == ["web", "demo"]
        assert "\n    demo:\n      image:" in store.read()

    def test_concurrent_adds_are_serialized(
        self, manifest_path: Path, make_spec: SpecFactory
    ) -> None:
        """Adds from several threads all land in the document."""
        names = [f"app-{index}" for index in range(8)]
        errors: list[BaseException] = []

        def worker(name: str) -> None:
            try:
                ManifestStore(manifest_path).add(make_spec(name))
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(name,)) for name in names]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        store = ManifestStore(manifest_path)
        assert sorted(store.names()) == sorted(["traefik", "registry", *names])
        assert set(yaml.safe_load(store.read())["services"]) >= set(names)


@pytest.mark.unit
class TestRemove:
    """Tests for deleting service blocks."""

    def test_remove_deletes_full_extent(
        self, store: ManifestStore, sample_manifest: str
    ) -> None:
        """The whole block goes, nothing else changes."""
        traefik = _block(sample_manifest, "traefik")

        store.remove("traefik")

        assert store.read() == sample_manifest.replace(traefik, "", 1)
        assert store.names() == ["registry"]

    def test_add_then_remove_restores_document(
        self, store: ManifestStore, sample_manifest: str, make_spec: SpecFactory
    ) -> None:
        """Removing a freshly added block restores the original bytes."""
        store.add(make_spec("demo"))
        store.remove("demo")

        assert store.read() == sample_manifest

    def test_remove_unknown_raises(
        self, store: ManifestStore, sample_manifest: str
    ) -> None:
        """Removing an undeclared name fails and writes nothing."""
        with pytest.raises(NotFoundError):
            store.remove("ghost")

        assert store.read() == sample_manifest


@pytest.mark.unit
class TestSetReplicas:
    """Tests for scaling a declared service."""

    def test_only_target_block_changes(
        self, store: ManifestStore, sample_manifest: str
    ) -> None:
        """The replicas line of one block is rewritten, others stay identical."""
        store.set_replicas("registry", 3)

        updated = store.read()
        assert store.get("registry").replicas == 3
        assert _block(updated, "traefik") == _block(sample_manifest, "traefik")
        assert _block(updated, "registry") == _block(sample_manifest, "registry").replace(
            "replicas: 1", "replicas: 3"
        )

    def test_scale_to_zero(self, store: ManifestStore, make_spec: SpecFactory) -> None:
        """Zero replicas is a valid desired state."""
        store.add(make_spec("demo"))

        store.set_replicas("demo", 0)

        assert store.get("demo").replicas == 0

    def test_unknown_name_raises(self, store: ManifestStore) -> None:
        """Scaling an undeclared name raises NotFoundError."""
        with pytest.raises(NotFoundError, match="ghost"):
            store.set_replicas("ghost", 1)

    def test_block_without_replicas_raises(self, temp_dir: Path) -> None:
        """A block with no replicas field cannot be scaled."""
        path = temp_dir / "stack.yml"
        original = "services:\n  web:\n    image: nginx\n"
        path.write_text(original)

        with pytest.raises(NotFoundError, match="no 'deploy.replicas' field"):
            ManifestStore(path).set_replicas("web", 2)

        assert path.read_text() == original

    def test_negative_replicas_rejected(self, store: ManifestStore) -> None:
        """Negative replica counts are a validation error."""
        with pytest.raises(ValidationError):
            store.set_replicas("registry", -1)

    def test_env_var_named_replicas_untouched(
        self, store: ManifestStore, make_spec: SpecFactory
    ) -> None:
        """Only deploy.replicas changes, never a same-named environment key."""
        store.add(make_spec("demo", env={"replicas": "keep"}))

        store.set_replicas("demo", 0)

        block = store.get("demo")
        assert block.replicas == 0
        assert block.environment == {"replicas": "keep"}

    def test_replicas_outside_deploy_ignored(self, temp_dir: Path) -> None:
        """A replicas key that is not under deploy does not count."""
        path = temp_dir / "stack.yml"
        original = (
            "services:\n"
            "  web:\n"
            "    environment:\n"
            "      replicas: \"2\"\n"
            "    deploy:\n"
            "      labels:\n"
            "        replicas: \"9\"\n"
        )
        path.write_text(original)

        with pytest.raises(NotFoundError):
            ManifestStore(path).set_replicas("web", 4)

        assert path.read_text() == original


@pytest.mark.unit
def test_ensure_document_creates_once(temp_dir: Path) -> None:
    """ensure_document writes boilerplate only when the file is missing."""
    path = temp_dir / "stack.yml"
    store = ManifestStore(path)

    store.ensure_document()
    first = path.read_text()
    path.write_text(first + "# edited\n")
    store.ensure_document()

    assert "services:" in first
    assert path.read_text().endswith("# edited\n")


@pytest.mark.unit
def test_new_document_declares_router_and_registry(temp_dir: Path) -> None:
    """A fresh manifest brings up the reverse proxy and the image registry."""
    store = ManifestStore(
        temp_dir / "stack.yml",
        registry=RegistryConfig(url="localhost:5001"),
        routing=RoutingConfig(network="yard_net", entrypoint="http"),
    )

    store.ensure_document()

    document = yaml.safe_load(store.read())
    services = document["services"]
    assert list(services) == ["traefik", "registry"]
    assert "--providers.swarm.network=yard_net" in services["traefik"]["command"]
    assert "--entrypoints.http.address=:80" in services["traefik"]["command"]
    assert services["registry"]["ports"] == ["5001:5000"]
    assert services["registry"]["networks"] == ["yard_net"]
    assert store.get("registry").replicas == 1
