# disparador/modules/catalog/link_preview.py

import re
from typing import Optional
from urllib.parse import urlsplit

import httpx
from loguru import logger

from disparador.core.exceptions import AppError
from disparador.core.logging_config import trace_id_var
from .models import LinkPreviewAPI

URL_RE = re.compile(r"^(https?)://[^\s/$.?#].[^\s]*$", re.IGNORECASE)
PREVIEW_TIMEOUT = 8.0
PREVIEW_MAX_REDIRECTS = 3
USER_AGENT = "Mozilla/5.0 (compatible; LinkPreview/1.0)"

def get_meta(html: str, name: str) -> Optional[str]:
    escaped = re.escape(name)
    patterns = (
        rf"""<meta[^>]+property=["']{escaped}["'][^>]+content=["']([^"']+)["']""",
        rf"""<meta[^>]+content=["']([^"']+)["'][^>]+property=["']{escaped}["']""",
        rf"""<meta[^>]+name=["']{escaped}["'][^>]+content=["']([^"']+)["']""",
    )
    for pattern in patterns:
        match = re.search(pattern, html, re.IGNORECASE)
        if match:
            return match.group(1)
    return None

def extract_meta(html: str, base_url: str) -> LinkPreviewAPI:
    title = get_meta(html, "og:title") or get_meta(html, "twitter:title")
    description = get_meta(html, "og:description") or get_meta(html, "twitter:description")
    image = get_meta(html, "og:image") or get_meta(html, "twitter:image")
    if image and image.startswith("/"):
        parts = urlsplit(base_url)
        image = f"{parts.scheme}://{parts.netloc}{image}"
    return LinkPreviewAPI(title=title, description=description, image=image)

async def fetch_link_preview(url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> LinkPreviewAPI:
    """Busca a página e devolve og:/twitter: title, description e image."""
    url = (url or "").strip()
    if not url or not URL_RE.match(url):
        raise AppError("URL inválida")

    log = logger.bind(trace_id=trace_id_var.get(), service="LinkPreview", url=url)
    try:
        async with httpx.AsyncClient(
            timeout=PREVIEW_TIMEOUT,
            follow_redirects=True,
            max_redirects=PREVIEW_MAX_REDIRECTS,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        ) as client:
            response = await client.get(url)
    except httpx.TimeoutException:
        log.warning("Timeout fetching link preview")
        raise AppError("Link inacessível")
    except httpx.TooManyRedirects:
        raise AppError("Link com redirecionamentos demais")
    except httpx.RequestError as e:
        log.warning(f"Request error fetching link preview: {e}")
        raise AppError("Link inacessível")

    log.debug(f"Link preview response status: {response.status_code}")
    if response.status_code in (401, 403):
        raise AppError("Não foi possível acessar o link")
    if not (200 <= response.status_code < 400):
        raise AppError(f"Erro ao buscar preview (HTTP {response.status_code})")
    return extract_meta(response.text or "", url)
