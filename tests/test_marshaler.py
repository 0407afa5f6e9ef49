"""Tests for the package marshaler."""

import gzip
import io
import tarfile

import pytest
import yaml

from xpkgdep.constants import PackageType
from xpkgdep.dep.models import Dependency, GroupVersionKind
from xpkgdep.errors import MalformedPackage
from xpkgdep.marshaler.package import PackageImage
from xpkgdep.marshaler.xpkg import Marshaler

META = {
    "apiVersion": "meta.pkg.crossplane.io/v1",
    "kind": "Configuration",
    "metadata": {"name": "platform"},
    "spec": {
        "dependsOn": [
            {"provider": "xpkg.upbound.io/org/provider-aws", "version": ">=v0.30.0"},
            {"function": "xpkg.upbound.io/org/function-patch"},
        ]
    },
}

CRD = {
    "apiVersion": "apiextensions.k8s.io/v1",
    "kind": "CustomResourceDefinition",
    "metadata": {"name": "buckets.s3.aws.example.org"},
    "spec": {
        "group": "s3.aws.example.org",
        "names": {"kind": "Bucket"},
        "versions": [
            {"name": "v1beta1", "schema": {"openAPIV3Schema": {"type": "object"}}},
            {"name": "v1alpha1"},
        ],
    },
}

XRD = {
    "apiVersion": "apiextensions.crossplane.io/v1",
    "kind": "CompositeResourceDefinition",
    "metadata": {"name": "xnetworks.example.org"},
    "spec": {
        "group": "example.org",
        "names": {"kind": "XNetwork"},
        "claimNames": {"kind": "Network"},
        "versions": [
            {"name": "v1", "schema": {"openAPIV3Schema": {"type": "object", "required": ["spec"]}}},
        ],
    },
}


def package_yaml(*docs):
    return yaml.safe_dump_all(docs).encode()


def tar_layer(files, compress=False):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    raw = buf.getvalue()
    return gzip.compress(raw) if compress else raw


def image(layer):
    return PackageImage(package="org/platform", tag="v1.0.0", digest="sha256:abc", layer=layer)


@pytest.fixture
def marshaler():
    return Marshaler()


class TestParse:
    """Parsing of package layers."""

    def test_parses_metadata_and_types(self, marshaler):
        layer = tar_layer({"package.yaml": package_yaml(META, CRD, XRD)})

        pkg = marshaler.parse(image(layer))

        assert pkg.name == "org/platform"
        assert pkg.version == "v1.0.0"
        assert pkg.digest == "sha256:abc"
        assert pkg.type is PackageType.CONFIGURATION
        assert pkg.dependencies == (
            Dependency("xpkg.upbound.io/org/provider-aws", ">=v0.30.0", PackageType.PROVIDER),
            Dependency("xpkg.upbound.io/org/function-patch", ">=v0.0.0", PackageType.FUNCTION),
        )
        assert set(pkg.validators) == {
            GroupVersionKind("s3.aws.example.org", "v1beta1", "Bucket"),
            GroupVersionKind("example.org", "v1", "XNetwork"),
            GroupVersionKind("example.org", "v1", "Network"),
        }

    def test_gzipped_layer(self, marshaler):
        layer = tar_layer({"./package.yaml": package_yaml(META)}, compress=True)

        pkg = marshaler.parse(image(layer))

        assert pkg.type is PackageType.CONFIGURATION
        assert pkg.validators == {}

    def test_provider_without_dependencies(self, marshaler):
        meta = {"apiVersion": "meta.pkg.crossplane.io/v1", "kind": "Provider", "metadata": {"name": "p"}}

        pkg = marshaler.from_yaml(package_yaml(meta), name="p", version="v1", digest="d")

        assert pkg.type is PackageType.PROVIDER
        assert pkg.dependencies == ()

    def test_not_an_archive(self, marshaler):
        with pytest.raises(MalformedPackage):
            marshaler.parse(image(b"definitely not a tarball"))

    def test_missing_package_file(self, marshaler):
        with pytest.raises(MalformedPackage, match="no package.yaml"):
            marshaler.parse(image(tar_layer({"other.yaml": b"a: 1"})))

    def test_invalid_yaml(self, marshaler):
        with pytest.raises(MalformedPackage):
            marshaler.from_yaml(b"key: [unclosed", name="p", version="v1", digest="d")

    def test_missing_metadata_document(self, marshaler):
        with pytest.raises(MalformedPackage, match="metadata"):
            marshaler.from_yaml(package_yaml(CRD), name="p", version="v1", digest="d")

    def test_duplicate_metadata_document(self, marshaler):
        with pytest.raises(MalformedPackage, match="more than one"):
            marshaler.from_yaml(package_yaml(META, META), name="p", version="v1", digest="d")

    def test_unknown_package_kind(self, marshaler):
        meta = dict(META, kind="Widget")

        with pytest.raises(MalformedPackage, match="unsupported package kind"):
            marshaler.from_yaml(package_yaml(meta), name="p", version="v1", digest="d")

    def test_crd_without_kind(self, marshaler):
        crd = {"kind": "CustomResourceDefinition", "spec": {"group": "g", "names": {}}}

        with pytest.raises(MalformedPackage):
            marshaler.from_yaml(package_yaml(META, crd), name="p", version="v1", digest="d")

    def test_depends_on_must_be_list(self, marshaler):
        meta = dict(META, spec={"dependsOn": {"provider": "org/x"}})

        with pytest.raises(MalformedPackage):
            marshaler.from_yaml(package_yaml(meta), name="p", version="v1", digest="d")

    def test_exported_validator_checks_claims(self, marshaler):
        pkg = marshaler.from_yaml(package_yaml(META, XRD), name="p", version="v1", digest="d")

        validator = pkg.validators[GroupVersionKind("example.org", "v1", "Network")]

        assert validator.iter_errors({"apiVersion": "example.org/v1", "kind": "Network"}) == [
            "'spec' is a required property"
        ]


class TestMalformedShapes:
    """Wrongly-typed YAML nodes are reported as MalformedPackage."""

    def test_metadata_spec_not_a_mapping(self, marshaler):
        layer = tar_layer({"package.yaml": package_yaml(dict(META, spec="oops"))})

        with pytest.raises(MalformedPackage, match="metadata spec must be a mapping"):
            marshaler.parse(image(layer))

    @pytest.mark.parametrize("spec", [
        "oops",
        {"group": "g", "names": ["Bucket"], "versions": []},
        {"group": "g", "names": {"kind": "Bucket"}, "versions": ["v1"]},
        {"group": "g", "names": {"kind": "Bucket"}, "versions": {"name": "v1"}},
        {"group": "g", "names": {"kind": "Bucket"}, "versions": [{"name": "v1", "schema": "x"}]},
    ])
    def test_crd_shapes(self, marshaler, spec):
        crd = dict(CRD, spec=spec)

        with pytest.raises(MalformedPackage):
            marshaler.from_yaml(package_yaml(META, crd), name="p", version="v1", digest="d")

    @pytest.mark.parametrize("spec", [
        ["not", "a", "mapping"],
        dict(XRD["spec"], claimNames="Network"),
        dict(XRD["spec"], versions=[None, "v1"]),
    ])
    def test_xrd_shapes(self, marshaler, spec):
        xrd = dict(XRD, spec=spec)

        with pytest.raises(MalformedPackage):
            marshaler.from_yaml(package_yaml(META, xrd), name="p", version="v1", digest="d")

    def test_metadata_without_mapping_name_still_reports(self, marshaler):
        crd = dict(CRD, metadata="buckets", spec={"group": "g", "names": {}})

        with pytest.raises(MalformedPackage, match="no spec.names.kind"):
            marshaler.from_yaml(package_yaml(META, crd), name="p", version="v1", digest="d")
