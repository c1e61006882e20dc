from datetime import datetime,timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from fastapi.responses import JSONResponse

def now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """sqlite hands back naive datetimes, treat those as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def money(value: Union[Decimal, int, float, str, None]) -> Optional[float]:
    # JSON bodies carry plain numbers, quantize first so 2200.00 doesn't render as 2200.0000001
    if value is None:
        return None
    return float(Decimal(str(value)).quantize(Decimal("0.01")))


def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def build_success(data: Dict[str, Any], message: Optional[str] = None,
                  trace_id: Optional[str] = None,request_id: Optional[str] = None,) -> Dict[str, Any]:
    return {
        "status": "success",
        "message": message,
        "data": data,
        "error": None,
        "trace_id": trace_id,
        "request_id": request_id,
    }

def build_error(code: Union[str, int] = "UNKNOWN_ERROR",
                details: Optional[Any] = None,
                request_id: Optional[str] = None,
                trace_id: Optional[str] = None) -> Dict[str, Any]:

    return {
        "status": "error",
        "data": None,
        "error": {"code": code, "details": details},
        "trace_id": trace_id,
        "request_id": request_id,
    }

def json_ok(content: Dict[str, Any], status_code: int = 200,headers = None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code,headers=headers)

def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)

def success_response(data: Dict[str, Any], status_code: int = 200,headers: Optional[Dict[str, Any]] = None ,
                     message: Optional[str] = None, request_id: Optional[str] = None) -> JSONResponse:
    content = build_success(data, message=message, request_id=request_id)
    return json_ok(content, status_code=status_code,headers=headers)
