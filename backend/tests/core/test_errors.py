"""Error Hierarchy — verifies response envelopes and exception metadata."""

from backbone.core.classify_error import classify_error
from backbone.core.errors import (
    BackboneError, ConfigurationError, DataLayerNotReadyError, ErrorSeverity,
    HealthCheckTimeoutError, ResourceNotFoundError, ServiceError,
)


def test_user_message_hides_internal_detail():
    error = classify_error(ServiceError("relation secret_table does not exist", "42P01"))
    assert "secret_table" in error.message
    assert "secret_table" not in error.user_message
    assert error.category.value == "database"
    assert error.code == "42P01"


def test_log_extra_fields():
    error = classify_error(ServiceError("x", "23505"))
    assert error.to_log_extra() == {
        "category": "validation", "error_code": "23505", "severity": "medium",
    }


def test_health_check_timeout_is_a_timeout():
    error = HealthCheckTimeoutError(5000)
    assert isinstance(error, TimeoutError)
    assert error.timeout_ms == 5000
    assert "5000ms" in str(error)


def test_backbone_error_subclasses():
    assert isinstance(ConfigurationError("bad"), BackboneError)
    assert ConfigurationError("bad").severity is ErrorSeverity.CRITICAL
    assert DataLayerNotReadyError().http_status == 503
    missing = ResourceNotFoundError("Subscription", "abc")
    assert missing.http_status == 404
    assert missing.to_response()["error"]["code"] == "RESOURCE_NOT_FOUND"
