# responses.py — Uniform JSON envelope: {success, data?, error?, meta}
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from logging_system import get_current_context


class CamelModel(BaseModel):
    """Schema base: camelCase on the wire, snake_case accepted too"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PageParams(BaseModel):
    page: int
    page_size: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def page_params(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
) -> PageParams:
    return PageParams(page=page, page_size=page_size)


def pagination_meta(params: PageParams, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / params.page_size) if total else 0
    return {
        "page": params.page,
        "pageSize": params.page_size,
        "totalCount": total,
        "totalPages": total_pages,
        "hasMore": params.page < total_pages,
    }


def _meta(extra: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
    context = get_current_context()
    if context:
        meta["requestId"] = context.request_id
    elif request_id:
        meta["requestId"] = request_id
    if extra:
        meta.update(extra)
    return meta


def _encode(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, list):
        return [_encode(item) for item in data]
    if isinstance(data, dict):
        return {key: _encode(value) for key, value in data.items()}
    return jsonable_encoder(data)


def api_success(data: Any, status: int = 200, pagination: Optional[Dict[str, Any]] = None) -> JSONResponse:
    meta = _meta({"pagination": pagination} if pagination else None)
    return JSONResponse(
        status_code=status,
        content={"success": True, "data": _encode(data), "meta": meta},
    )


def api_error(
    code: str,
    message: str,
    status: int,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = jsonable_encoder(details)
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": error, "meta": _meta(request_id=request_id)},
    )
