import ipaddress
import logging
import re
import socket
from datetime import datetime
from typing import Any, Literal, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from config import settings
from export.csv_export import generate_csv
from export.xlsx import generate_xlsx
from tracking.engine import run_health_check
from tracking.models import CheckConfig

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/checks", tags=["checks"])


class CheckRequest(BaseModel):
    url: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    max_phone_links: int = settings.max_phone_links
    max_email_links: int = settings.max_email_links
    max_forms: int = settings.max_forms
    test_contact_pages: bool = True
    expected: Optional[Any] = None


def validate_target(url: str) -> str:
    """Reject non-http(s) URLs and loopback/private targets (SSRF guard).

    Returns the URL with a scheme added if it had none.
    """
    if "://" not in url.strip():
        url = f"https://{url.strip()}"
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid URL. Include scheme (https://)",
        )

    if parsed.scheme not in ("http", "https"):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Only http and https URLs are supported",
        )

    hostname = parsed.hostname or ""
    if hostname in ("localhost", "127.0.0.1", "0.0.0.0", "::1", ""):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Cannot check localhost or loopback addresses",
        )
    try:
        resolved = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC)
        for _, _, _, _, addr in resolved:
            ip = ipaddress.ip_address(addr[0])
            if ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="Cannot check private or reserved IP addresses",
                )
    except socket.gaierror:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Could not resolve hostname",
        )
    return url


def _config_from(body: CheckRequest) -> CheckConfig:
    return CheckConfig(
        url=validate_target(body.url),
        client_id=body.client_id,
        client_name=body.client_name,
        max_phone_links=body.max_phone_links,
        max_email_links=body.max_email_links,
        max_forms=body.max_forms,
        test_contact_pages=body.test_contact_pages,
    )


def _export_filename(url: str, ext: str) -> str:
    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    safe_domain = re.sub(r"[^a-zA-Z0-9_-]", "_", urlparse(url).netloc)[:60]
    return f"tagpulse_{safe_domain}_{timestamp}.{ext}"


@router.post("")
async def create_check(body: CheckRequest):
    """Run a tracking health check and return the report."""
    config = _config_from(body)
    logger.info("Health check requested for %s", config.url)

    report = await run_health_check(config)

    result = report.model_dump(mode="json")
    result["expected"] = body.expected
    return result


@router.post("/export")
async def export_check(
    body: CheckRequest,
    format: Literal["csv", "xlsx"] = Query("xlsx"),
):
    """Run a health check and download its interactions as CSV or XLSX."""
    config = _config_from(body)
    report = await run_health_check(config)

    if format == "csv":
        return Response(
            content=generate_csv(report),
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="{_export_filename(config.url, "csv")}"'
            },
        )

    buffer = generate_xlsx(report)
    return StreamingResponse(
        buffer,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={
            "Content-Disposition": f'attachment; filename="{_export_filename(config.url, "xlsx")}"'
        },
    )
