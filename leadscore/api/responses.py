"""
Uniform response envelope shared by every router.

Success:  {"success": true,  "data": ...,                         "timestamp": "..."}
Failure:  {"success": false, "error": {"code": "...", "message": "..."}, "timestamp": "..."}

Failures are produced by the exception handlers registered in
leadscore.main; routers only ever build the success form.
"""

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder

from leadscore.models.schemas import ApiError, ApiResponse


def ok(data: Any = None) -> ApiResponse:
    return ApiResponse(success=True, data=jsonable_encoder(data))


def error_body(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    envelope = ApiResponse(success=False, error=ApiError(code=code, message=message, details=details or None))
    return jsonable_encoder(envelope, exclude_none=True)
