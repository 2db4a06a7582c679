from tripshare.core.exceptions import (
    ErrorCategory,
    ErrorCode,
    PermissionDeniedError,
    StoreUnavailableError,
)
from tripshare.schemas.base import ServiceResult


def test_failure_carries_error_info():
    result = ServiceResult.failure(PermissionDeniedError("t1", "u2", "edit_trip"))

    assert not result.ok
    assert result.error_code == ErrorCode.PERMISSION_DENIED
    assert result.error.category == ErrorCategory.PERMISSION_DENIED
    assert result.error.status_code == 403


def test_failure_envelope():
    envelope = ServiceResult.failure(StoreUnavailableError("get_by_id")).to_envelope()

    assert envelope.status == "error"
    assert envelope.data is None
    assert envelope.error_code == "STORE_UNAVAILABLE"


def test_success_envelope():
    envelope = ServiceResult.success({"id": "t1"}).to_envelope()

    assert envelope.model_dump() == {"status": "ok", "data": {"id": "t1"}, "error": None, "error_code": None}
