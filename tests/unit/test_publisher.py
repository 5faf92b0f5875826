"""Unit tests for the Image Publisher."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import SecretStr

from shipyard.bridge.credentials import RegistryCredential, StaticCredentialProvider
from shipyard.core.publisher import (
    ImageBuilder,
    ImagePublisher,
    RegistryClient,
    validate_build_context,
    validate_image_name,
)
from shipyard.errors import (
    InvalidBuildContextError,
    InvalidImageNameError,
    PushFailedError,
    TagReusedError,
)
from shipyard.models.images import BuildContext
from shipyard.models.pipeline import RegistrySpec
from tests.fakes import FakeBuilder, FakeRegistry, fake_digest

REGISTRY = RegistrySpec(host="reg.example.com", credential="acr")


@pytest.fixture
def context(project_dir: Path) -> BuildContext:
    return BuildContext(root=project_dir)


class TestProtocols:
    def test_fakes_satisfy_protocols(self):
        assert isinstance(FakeBuilder(), ImageBuilder)
        assert isinstance(FakeRegistry(), RegistryClient)


class TestValidation:
    def test_valid_context(self, context: BuildContext):
        validate_build_context(context)

    def test_missing_root(self, tmp_path: Path):
        with pytest.raises(InvalidBuildContextError):
            validate_build_context(BuildContext(root=tmp_path / "nope"))

    def test_missing_recipe(self, tmp_path: Path):
        with pytest.raises(InvalidBuildContextError):
            validate_build_context(BuildContext(root=tmp_path))

    @pytest.mark.parametrize("name", ["myapp", "team/my-app", "a.b_c"])
    def test_valid_names(self, name: str):
        validate_image_name(name)

    @pytest.mark.parametrize("name", ["", "MyApp", "-app", "app/"])
    def test_invalid_names(self, name: str):
        with pytest.raises(InvalidImageNameError):
            validate_image_name(name)


class TestPublish:
    def test_example_reference(self, context: BuildContext):
        """myapp, run 42 -> reg.example.com/myapp:42."""
        registry = FakeRegistry()
        publisher = ImagePublisher(FakeBuilder(), registry, REGISTRY)

        ref = publisher.publish(context, "myapp", "42")

        assert (ref.registry, ref.repository, ref.tag) == ("reg.example.com", "myapp", "42")
        assert ref.qualified == "reg.example.com/myapp:42"
        assert ref.digest == fake_digest("reg.example.com/myapp:42")
        assert registry.pushed == ["reg.example.com/myapp:42"]

    def test_namespace_prefixes_repository(self, context: BuildContext):
        publisher = ImagePublisher(
            FakeBuilder(), FakeRegistry(), RegistrySpec(host="reg.example.com", namespace="team/")
        )
        ref = publisher.publish(context, "myapp", "7")
        assert ref.repository == "team/myapp"

    def test_push_retry_reuses_build(self, context: BuildContext):
        builder = FakeBuilder()
        registry = FakeRegistry(errors=[PushFailedError("connection reset")])
        publisher = ImagePublisher(builder, registry, REGISTRY)

        with pytest.raises(PushFailedError):
            publisher.publish(context, "myapp", "42")
        publisher.publish(context, "myapp", "42")

        assert len(builder.builds) == 1
        assert registry.attempts == 2

    def test_same_tag_different_digest_rejected(self, context: BuildContext):
        registry = FakeRegistry(digest="sha256:" + "a" * 64)
        publisher = ImagePublisher(FakeBuilder(), registry, REGISTRY)
        publisher.publish(context, "myapp", "42")

        registry.digest = "sha256:" + "b" * 64
        with pytest.raises(TagReusedError):
            publisher.publish(context, "myapp", "42")

    def test_credential_passed_to_registry(self, context: BuildContext):
        cred = RegistryCredential(username="ci", password=SecretStr("s3cret"))
        registry = FakeRegistry()
        publisher = ImagePublisher(
            FakeBuilder(), registry, REGISTRY, StaticCredentialProvider(registries={"acr": cred})
        )
        publisher.publish(context, "myapp", "42")
        assert registry.credentials == [cred]

    def test_invalid_tag(self):
        publisher = ImagePublisher(FakeBuilder(), FakeRegistry(), REGISTRY)
        with pytest.raises(InvalidImageNameError):
            publisher.reference_for("myapp", "bad tag")
