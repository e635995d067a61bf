"""
Conversion service for SchemaBridge.

The ConversionService is the protocol boundary of the conversion engine:
it decodes a batch ConversionRequest, converts every object to the desired
API version through the kind's PathComposer, and encodes a
ConversionResponse with one result per input object.

Invariants:
    - len(response.results) == len(request.objects), in the same order
    - One item's failure never aborts the batch
    - The correlation id is copied verbatim
    - An item's source version comes from its own apiVersion field
    - A group in desiredAPIVersion must be the kind's registered group
    - The service holds no mutable state besides the frozen registry

How to change safely:
    - Never reorder or drop results; callers correlate by position
    - Add new failure codes as new SchemaBridgeError subclasses
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..conversion.objects import (
    join_api_version,
    object_api_version,
    object_kind,
    split_api_version,
)
from ..conversion.registry import ConversionRegistry
from ..errors import (
    BatchTooLargeError,
    MalformedObjectError,
    SchemaBridgeError,
    UnknownVersionError,
)

logger = logging.getLogger(__name__)

REVIEW_API_VERSION = "apiextensions.k8s.io/v1"


# --- Request/Response Models ---


class ConversionRequest(BaseModel):
    """Batch of objects to convert to one API version."""

    model_config = ConfigDict(populate_by_name=True)

    correlation_id: str = Field(..., alias="correlationId", description="Echoed in the response")
    desired_api_version: str = Field(
        ..., alias="desiredAPIVersion", description="Target version, 'group/version' or 'version'"
    )
    objects: list[Any] = Field(default_factory=list, description="Raw encoded objects")


class ItemError(BaseModel):
    """Structured per-item failure."""

    model_config = ConfigDict(populate_by_name=True)

    reason: str
    code: str = "InternalError"
    failed_at_version: str | None = Field(None, alias="failedAtVersion")

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"reason": self.reason, "code": self.code}
        if self.failed_at_version is not None:
            data["failedAtVersion"] = self.failed_at_version
        return data


class ItemResult(BaseModel):
    """Either a converted object or an error, never both."""

    model_config = ConfigDict(populate_by_name=True)

    converted_object: dict[str, Any] | None = Field(None, alias="convertedObject")
    error: ItemError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_wire(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error.to_wire()}
        return {"convertedObject": self.converted_object}


class ConversionResponse(BaseModel):
    """Batch result, positionally aligned with the request."""

    model_config = ConfigDict(populate_by_name=True)

    correlation_id: str = Field(..., alias="correlationId")
    results: list[ItemResult]

    def to_wire(self) -> dict[str, Any]:
        """JSON body; built by hand so nulls inside objects survive untouched."""
        return {
            "correlationId": self.correlation_id,
            "results": [r.to_wire() for r in self.results],
        }


# --- Service ---


class ConversionService:
    """Stateless batch converter.

    Thread safety:
        Safe for concurrent requests; the registry is frozen and read-only.

    Example:
        >>> service = ConversionService(registry)
        >>> response = service.convert(ConversionRequest(
        ...     correlationId="abc", desiredAPIVersion="example.com/v1", objects=[obj]
        ... ))
    """

    def __init__(
        self,
        registry: ConversionRegistry,
        max_workers: int = 1,
        max_batch_size: int = 0,
    ) -> None:
        """Initialize the service.

        Args:
            registry: Frozen conversion registry
            max_workers: Threads converting items of one batch (1 = in caller thread)
            max_batch_size: Largest accepted batch (0 = unlimited)
        """
        self.registry = registry
        self.max_workers = max_workers
        self.max_batch_size = max_batch_size
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def convert(self, request: ConversionRequest) -> ConversionResponse:
        """Convert every object of the request.

        Raises:
            BatchTooLargeError: If the batch exceeds ``max_batch_size``
        """
        objects = request.objects
        if self.max_batch_size and len(objects) > self.max_batch_size:
            raise BatchTooLargeError(len(objects), self.max_batch_size)

        desired_group, desired_version = split_api_version(request.desired_api_version)

        def convert_one(obj: Any) -> ItemResult:
            return self.convert_item(obj, desired_version, desired_group or None)

        if self.max_workers > 1 and len(objects) > 1:
            results = list(self._get_executor().map(convert_one, objects))
        else:
            results = [convert_one(obj) for obj in objects]

        failures = sum(1 for r in results if not r.ok)
        logger.debug(
            f"Converted batch of {len(objects)} to {request.desired_api_version}",
            extra={"correlation_id": request.correlation_id, "failures": failures},
        )
        return ConversionResponse(correlation_id=request.correlation_id, results=results)

    def convert_item(
        self,
        obj: Any,
        desired_version: str,
        desired_group: str | None = None,
    ) -> ItemResult:
        """Convert a single object; every failure becomes an ItemResult error."""
        try:
            kind = object_kind(obj)
            group, source_version = object_api_version(obj)
            resource = self.registry.get_kind(kind)
            if desired_group is not None and desired_group != resource.group:
                raise UnknownVersionError(
                    join_api_version(desired_group, desired_version),
                    [join_api_version(resource.group, v) for v in resource.version_set.names],
                )
            composer = self.registry.composer(kind)
            converted = composer.convert(obj, source_version, desired_version)
        except SchemaBridgeError as e:
            return ItemResult(
                error=ItemError(
                    reason=e.message,
                    code=e.code,
                    failed_at_version=getattr(e, "failed_at_version", None),
                )
            )
        except Exception as e:
            logger.error(f"Unexpected conversion error: {e}", exc_info=True)
            return ItemResult(
                error=ItemError(reason=f"{type(e).__name__}: {e}", code="InternalError")
            )

        out_group = desired_group if desired_group is not None else group
        api_version = join_api_version(out_group, desired_version)
        if converted.get("apiVersion") != api_version:
            # Identity conversions hand back the caller's object; copy before stamping.
            converted = dict(converted)
            converted["apiVersion"] = api_version
        return ItemResult(converted_object=converted)

    def review(self, review: dict[str, Any]) -> dict[str, Any]:
        """Handle a Kubernetes-style ConversionReview.

        ConversionReview is all-or-nothing: any failed item fails the
        whole review and no objects are returned.

        Raises:
            MalformedObjectError: If the review has no request section
        """
        request = review.get("request") if isinstance(review, dict) else None
        if not isinstance(request, dict):
            raise MalformedObjectError("ConversionReview has no 'request' object")

        uid = str(request.get("uid", ""))
        batch = ConversionRequest(
            correlation_id=uid,
            desired_api_version=str(request.get("desiredAPIVersion", "")),
            objects=list(request.get("objects") or []),
        )
        response = self.convert(batch)

        failed = [(i, r.error) for i, r in enumerate(response.results) if r.error is not None]
        if failed:
            message = "; ".join(f"object {i}: {err.reason}" for i, err in failed)
            result: dict[str, Any] = {"status": "Failure", "message": message}
            converted: list[dict[str, Any]] = []
        else:
            result = {"status": "Success"}
            converted = [r.converted_object for r in response.results]

        return {
            "apiVersion": review.get("apiVersion", REVIEW_API_VERSION),
            "kind": "ConversionReview",
            "response": {"uid": uid, "convertedObjects": converted, "result": result},
        }

    def _get_executor(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="schemabridge-batch"
                )
            return self._executor

    def close(self) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None
