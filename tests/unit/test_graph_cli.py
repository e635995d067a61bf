"""
Unit tests for the conversion graph CLI.
"""

import json
import textwrap
import uuid

import pytest

from schemabridge.tools.graph_cli import GraphCLI, main
from schemabridge.versions.comparator import Ordering

CONVERSIONS = """
from schemabridge.conversion.registry import ConversionRegistry
from schemabridge.versions.types import VersionSet, VersionSpec, edge

registry = ConversionRegistry()
registry.register_kind(
    "Widget",
    VersionSet([VersionSpec("v1", storage=True), VersionSpec("v1beta1"), VersionSpec("v1alpha1")]),
    group="example.com",
)
registry.register_edge("Widget", edge("v1alpha1", "v1beta1"))
{extra}
"""


@pytest.fixture
def conversions_module(tmp_path, monkeypatch):
    """Write a conversions module and return a factory for its import name."""
    monkeypatch.syspath_prepend(str(tmp_path))

    def make(extra=""):
        name = f"conversions_{uuid.uuid4().hex}"
        source = CONVERSIONS.format(extra=textwrap.dedent(extra))
        (tmp_path / f"{name}.py").write_text(source)
        return name

    return make


def run(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestGraphCLI:
    """Tests for GraphCLI and its entry point."""

    def test_compare(self):
        assert GraphCLI().compare("v1", "v1beta2") is Ordering.GREATER

    def test_compare_command(self, capsys):
        assert run(["compare", "v2alpha1", "v2alpha2"]) == 0
        assert capsys.readouterr().out.splitlines()[0] == "v2alpha1 < v2alpha2"

    def test_compare_notes_malformed(self, capsys):
        run(["compare", "foo1", "v1"])
        out = capsys.readouterr().out
        assert "foo1 < v1" in out
        assert "foo1 is malformed" in out

    def test_validate_complete(self, conversions_module, capsys):
        module = conversions_module('registry.register_edge("Widget", edge("v1beta1", "v1"))')

        assert run(["validate", "--module", module]) == 0
        assert "complete" in capsys.readouterr().out

    def test_validate_incomplete_exits_nonzero(self, conversions_module, capsys):
        module = conversions_module()

        assert run(["validate", "--module", module]) == 1
        assert "Widget" in capsys.readouterr().out

    def test_versions_json(self, conversions_module, capsys):
        module = conversions_module('registry.register_edge("Widget", edge("v1beta1", "v1"))')

        assert run(["versions", "--module", module, "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["Widget"]["versions"] == ["v1", "v1beta1", "v1alpha1"]
        assert data["Widget"]["storage_version"] == "v1"

    def test_path(self, conversions_module, capsys):
        module = conversions_module('registry.register_edge("Widget", edge("v1beta1", "v1"))')

        code = run(["path", "--module", module, "--kind", "Widget", "--from", "v1alpha1", "--to", "v1"])

        assert code == 0
        assert capsys.readouterr().out.strip() == "v1alpha1 -> v1beta1 -> v1"

    def test_path_unknown_version(self, conversions_module, capsys):
        module = conversions_module('registry.register_edge("Widget", edge("v1beta1", "v1"))')

        code = run(["path", "--module", module, "--kind", "Widget", "--from", "v1", "--to", "v5"])

        assert code == 1
        assert "UnknownVersion" in capsys.readouterr().err
