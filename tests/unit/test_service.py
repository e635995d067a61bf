"""
Unit tests for the ConversionService.

Tests cover:
- Batch conversion with per-item results
- Item failure isolation
- Malformed items
- Desired group handling
- ConversionReview adapter
- Batch size limit
"""

import pytest

from schemabridge.api.service import ConversionRequest, ConversionService
from schemabridge.conversion.registry import ConversionRegistry
from schemabridge.errors import BatchTooLargeError, MalformedObjectError
from schemabridge.versions.types import VersionSet, VersionSpec, edge


def widget(version, **spec):
    return {"apiVersion": f"example.com/{version}", "kind": "Widget", "spec": dict(spec)}


@pytest.fixture
def registry():
    def alpha_to_beta(obj):
        if obj["spec"].get("broken"):
            raise ValueError("broken widget")
        obj["spec"]["size"] = obj["spec"].pop("legacySize", 0)
        return obj

    def beta_to_alpha(obj):
        obj["spec"]["legacySize"] = obj["spec"].pop("size", 0)
        return obj

    reg = ConversionRegistry()
    reg.register_kind(
        "Widget",
        VersionSet(
            [
                VersionSpec("v1", storage=True),
                VersionSpec("v1beta1"),
                VersionSpec("v1alpha1"),
            ]
        ),
        group="example.com",
    )
    reg.register_edge("Widget", edge("v1alpha1", "v1beta1", upgrade=alpha_to_beta, downgrade=beta_to_alpha))
    reg.register_edge("Widget", edge("v1beta1", "v1"))
    reg.freeze()
    return reg


class TestConversionService:
    """Tests for ConversionService.convert."""

    @pytest.fixture
    def service(self, registry):
        service = ConversionService(registry)
        yield service
        service.close()

    def test_converts_batch(self, service):
        request = ConversionRequest(
            correlationId="req-1",
            desiredAPIVersion="example.com/v1",
            objects=[widget("v1alpha1", legacySize=3), widget("v1beta1", size=4)],
        )

        response = service.convert(request)

        assert response.correlation_id == "req-1"
        assert [r.ok for r in response.results] == [True, True]
        assert response.results[0].converted_object["spec"] == {"size": 3}
        assert response.results[0].converted_object["apiVersion"] == "example.com/v1"
        assert response.results[1].converted_object["apiVersion"] == "example.com/v1"

    def test_failing_item_does_not_abort_batch(self, service):
        request = ConversionRequest(
            correlationId="req-2",
            desiredAPIVersion="example.com/v1",
            objects=[
                widget("v1alpha1", legacySize=1),
                widget("v1alpha1", broken=True),
                widget("v1alpha1", legacySize=2),
            ],
        )

        response = service.convert(request)

        assert len(response.results) == 3
        assert response.results[0].converted_object["spec"] == {"size": 1}
        assert response.results[2].converted_object["spec"] == {"size": 2}

        error = response.results[1].error
        assert error.code == "HopConversionFailure"
        assert error.failed_at_version == "v1alpha1"
        assert "broken widget" in error.reason

    @pytest.mark.parametrize(
        "item,code",
        [
            (42, "MalformedObject"),
            ({"kind": "Widget"}, "MalformedObject"),
            ({"apiVersion": "example.com/v1"}, "MalformedObject"),
            ({"apiVersion": "example.com/v1", "kind": "Gadget"}, "UnknownKind"),
            ({"apiVersion": "example.com/v9", "kind": "Widget"}, "UnknownVersion"),
        ],
    )
    def test_item_errors(self, service, item, code):
        request = ConversionRequest(
            correlationId="req-3",
            desiredAPIVersion="example.com/v1",
            objects=[item],
        )

        response = service.convert(request)

        assert response.results[0].error.code == code

    def test_unknown_desired_version(self, service):
        request = ConversionRequest(
            correlationId="req-4",
            desiredAPIVersion="example.com/v7",
            objects=[widget("v1")],
        )
        assert service.convert(request).results[0].error.code == "UnknownVersion"

    def test_identity_item_returned_unchanged(self, service):
        obj = widget("v1", size=1)
        request = ConversionRequest(
            correlationId="req-5", desiredAPIVersion="example.com/v1", objects=[obj]
        )

        result = service.convert(request).results[0]

        assert result.converted_object == obj

    def test_bare_desired_version_keeps_object_group(self, service):
        request = ConversionRequest(
            correlationId="req-6", desiredAPIVersion="v1beta1", objects=[widget("v1")]
        )
        result = service.convert(request).results[0]
        assert result.converted_object["apiVersion"] == "example.com/v1beta1"

    def test_desired_group_applied_without_mutating_input(self, service):
        obj = dict(widget("v1"), apiVersion="v1")
        request = ConversionRequest(
            correlationId="req-7", desiredAPIVersion="example.com/v1", objects=[obj]
        )

        result = service.convert(request).results[0]

        assert result.converted_object["apiVersion"] == "example.com/v1"
        assert obj["apiVersion"] == "v1"

    def test_foreign_group_is_item_error(self, service):
        obj = widget("v1beta1")
        request = ConversionRequest(
            correlationId="req-7b",
            desiredAPIVersion="other.io/v1",
            objects=[obj, widget("v1beta1")],
        )

        response = service.convert(request)

        error = response.results[0].error
        assert error.code == "UnknownVersion"
        assert "other.io/v1" in error.reason
        assert response.results[1].error.code == "UnknownVersion"
        assert obj["apiVersion"] == "example.com/v1beta1"

    def test_empty_batch(self, service):
        request = ConversionRequest(correlationId="req-8", desiredAPIVersion="v1", objects=[])
        response = service.convert(request)
        assert response.results == []

    def test_wire_format(self, service):
        request = ConversionRequest(
            correlationId="req-9",
            desiredAPIVersion="example.com/v1",
            objects=[widget("v1beta1", note=None), "junk"],
        )

        wire = service.convert(request).to_wire()

        assert wire["correlationId"] == "req-9"
        assert wire["results"][0] == {
            "convertedObject": {"apiVersion": "example.com/v1", "kind": "Widget", "spec": {"note": None}}
        }
        assert set(wire["results"][1]) == {"error"}
        assert wire["results"][1]["error"]["code"] == "MalformedObject"

    def test_parallel_batch_keeps_order(self, registry):
        service = ConversionService(registry, max_workers=4)
        objects = [widget("v1alpha1", legacySize=i) for i in range(20)]
        request = ConversionRequest(
            correlationId="req-10", desiredAPIVersion="example.com/v1", objects=objects
        )

        try:
            response = service.convert(request)
        finally:
            service.close()

        assert [r.converted_object["spec"]["size"] for r in response.results] == list(range(20))

    def test_batch_size_limit(self, registry):
        service = ConversionService(registry, max_batch_size=2)
        request = ConversionRequest(
            correlationId="req-11",
            desiredAPIVersion="v1",
            objects=[widget("v1"), widget("v1"), widget("v1")],
        )

        with pytest.raises(BatchTooLargeError):
            service.convert(request)


class TestConversionReview:
    """Tests for the ConversionReview adapter."""

    @pytest.fixture
    def service(self, registry):
        return ConversionService(registry)

    def test_success(self, service):
        review = {
            "apiVersion": "apiextensions.k8s.io/v1",
            "kind": "ConversionReview",
            "request": {
                "uid": "abc-123",
                "desiredAPIVersion": "example.com/v1alpha1",
                "objects": [widget("v1", size=7)],
            },
        }

        result = service.review(review)

        assert result["kind"] == "ConversionReview"
        assert result["apiVersion"] == "apiextensions.k8s.io/v1"
        response = result["response"]
        assert response["uid"] == "abc-123"
        assert response["result"] == {"status": "Success"}
        assert response["convertedObjects"][0]["spec"] == {"legacySize": 7}

    def test_any_failure_fails_review(self, service):
        review = {
            "request": {
                "uid": "abc-456",
                "desiredAPIVersion": "example.com/v1",
                "objects": [widget("v1beta1"), widget("v1alpha1", broken=True)],
            }
        }

        response = service.review(review)["response"]

        assert response["result"]["status"] == "Failure"
        assert "object 1" in response["result"]["message"]
        assert response["convertedObjects"] == []

    def test_missing_request(self, service):
        with pytest.raises(MalformedObjectError):
            service.review({"kind": "ConversionReview"})
