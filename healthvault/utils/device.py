"""Client context (IP, user agent, device descriptor) for audit and session records."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request


@dataclass(frozen=True)
class ClientContext:
    ip_address: str = "unknown"
    user_agent: Optional[str] = None
    device_info: str = "Desktop - Unknown - Unknown"


def get_device_info(user_agent: Optional[str]) -> str:
    """Summarize a user agent as '<type> - <os> - <browser>'."""
    ua = user_agent or ""

    # Order matters: Edge and Opera UAs also contain "Chrome"
    browser = "Unknown"
    if "Edg" in ua:
        browser = "Edge"
    elif "OPR" in ua or "Opera" in ua:
        browser = "Opera"
    elif "Chrome" in ua:
        browser = "Chrome"
    elif "Firefox" in ua:
        browser = "Firefox"
    elif "Safari" in ua:
        browser = "Safari"

    os_name = "Unknown"
    if "Windows" in ua:
        os_name = "Windows"
    elif "Android" in ua:
        os_name = "Android"
    elif "iPhone" in ua or "iPad" in ua:
        os_name = "iOS"
    elif "Mac" in ua:
        os_name = "MacOS"
    elif "Linux" in ua:
        os_name = "Linux"

    device_type = "Desktop"
    if "Tablet" in ua or "iPad" in ua:
        device_type = "Tablet"
    elif "Mobile" in ua:
        device_type = "Mobile"

    return f"{device_type} - {os_name} - {browser}"


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check X-Forwarded-For header (set by reverse proxies)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (client IP)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def get_client_context(request: Request) -> ClientContext:
    user_agent = request.headers.get("User-Agent")
    return ClientContext(
        ip_address=get_client_ip(request),
        user_agent=user_agent,
        device_info=get_device_info(user_agent),
    )
