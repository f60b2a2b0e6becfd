"""Tests for the control-plane request/response models and error mapping."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from stackyard.lib.errors import (
    AlreadyExistsError,
    DockerNotAvailableError,
    NotFoundError,
    ReconcileFailedError,
    ShutdownInProgressError,
    StackyardError,
    ValidationError,
)
from stackyard.models.app import AppKind
from stackyard.serve.models import AcceptedResponse, AppNameRequest, CreateAppRequest
from stackyard.serve.server import status_for


@pytest.mark.unit
class TestCreateAppRequest:
    """Tests for CreateAppRequest."""

    def test_camel_case_body(self) -> None:
        """Client field names map onto the request model."""
        request = CreateAppRequest.model_validate(
            {
                "appName": "demo",
                "sourceURL": "https://github.com/acme/demo.git",
                "kind": "python",
                "installCommand": "pip install .",
                "env": {"DEBUG": "0"},
            }
        )

        assert request.app_name == "demo"
        assert request.kind == AppKind.PYTHON
        assert request.install_command == "pip install ."

    def test_legacy_aliases(self) -> None:
        """appType and githubUrl are still understood."""
        request = CreateAppRequest.model_validate(
            {"appName": "demo", "appType": "node", "githubUrl": "https://x/demo.git"}
        )

        assert request.kind == AppKind.NODE
        assert request.source_url == "https://x/demo.git"

    def test_unknown_fields_ignored(self) -> None:
        """Extra client fields are dropped."""
        request = CreateAppRequest.model_validate({"appName": "demo", "color": "blue"})

        assert request.app_name == "demo"

    def test_to_spec_derives_domain(self) -> None:
        """The routing host uses the configured suffix."""
        spec = CreateAppRequest(app_name="demo", source_url="https://x/demo.git").to_spec(
            "apps.example.com"
        )

        assert spec.name == "demo"
        assert spec.domain == "demo.apps.example.com"

    def test_to_spec_ignores_client_domain(self) -> None:
        """A domain in the body never replaces the derived routing host."""
        request = CreateAppRequest.model_validate(
            {
                "appName": "demo",
                "sourceURL": "https://x/demo.git",
                "domain": "victim.localhost`) || PathPrefix(`/",
            }
        )

        spec = request.to_spec("apps.example.com")

        assert spec.domain == "demo.apps.example.com"

    def test_to_spec_with_empty_name(self) -> None:
        """Empty names are left for the pipeline request checks."""
        spec = CreateAppRequest(source_url="https://x/demo.git").to_spec()

        assert spec.name == ""


@pytest.mark.unit
def test_app_name_request_requires_name() -> None:
    """An empty app name is a schema error."""
    with pytest.raises(PydanticValidationError):
        AppNameRequest.model_validate({"appName": ""})


@pytest.mark.unit
def test_accepted_response_serializes_camel_case() -> None:
    """Acknowledgments use the client's field names."""
    body = AcceptedResponse(app_name="demo", job_id="01J", domain="demo.localhost")

    assert body.model_dump(by_alias=True) == {
        "status": "accepted",
        "appName": "demo",
        "jobId": "01J",
        "domain": "demo.localhost",
    }


@pytest.mark.unit
@pytest.mark.parametrize(
    ("error", "status"),
    [
        (ValidationError("sourceURL", "must not be empty"), 400),
        (NotFoundError("stack.yml", "demo"), 404),
        (AlreadyExistsError("stack.yml", "demo"), 409),
        (ShutdownInProgressError(), 503),
        (DockerNotAvailableError("build"), 503),
        (ReconcileFailedError("boom"), 502),
        (StackyardError("boom"), 500),
    ],
)
def test_status_for(error: StackyardError, status: int) -> None:
    """Each error family maps onto one HTTP status."""
    assert status_for(error) == status
