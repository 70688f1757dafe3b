# disparador/services/mercadopago.py
# Pagamento PIX via Orders API do Mercado Pago.

import json
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from loguru import logger
from pydantic import BaseModel

from disparador.core.config import settings
from disparador.core.dates import now_ms
from disparador.core.exceptions import AppError, ExternalServiceError
from disparador.core.logging_config import trace_id_var

MIN_PIX_EXPIRATION_MIN = 30
MAX_PIX_EXPIRATION_MIN = 43200  # 30 dias

class PixOrder(BaseModel):
    payment_id: str
    qr_code: str
    qr_code_base64: str
    expiration_minutes: int

def clamp_pix_expiration(minutes: Optional[int]) -> int:
    return min(MAX_PIX_EXPIRATION_MIN, max(MIN_PIX_EXPIRATION_MIN, minutes or MIN_PIX_EXPIRATION_MIN))

def _payer(email: str, name: Optional[str]) -> Dict[str, Any]:
    payer: Dict[str, Any] = {"email": email}
    parts = (name or "").split()
    if parts:
        payer["first_name"] = parts[0]
        if len(parts) > 1:
            payer["last_name"] = " ".join(parts[1:])
    return payer

async def create_pix_order(
    access_token: Optional[str],
    title: str,
    amount: Decimal,
    external_reference: str,
    payer_email: str,
    payer_name: Optional[str] = None,
    expiration_minutes: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PixOrder:
    """Cria a ordem PIX e devolve o código copia-e-cola e a imagem do QR."""
    log = logger.bind(trace_id=trace_id_var.get(), service="MercadoPago", reference=external_reference)
    if not access_token:
        raise AppError("Mercado Pago não configurado. Configure o token em Configurações.")

    expiration = clamp_pix_expiration(expiration_minutes)
    value = f"{amount:.2f}"
    payload = {
        "type": "online",
        "external_reference": external_reference,
        "currency_id": settings.MERCADOPAGO_CURRENCY,
        "total_amount": value,
        "processing_mode": "automatic",
        "transactions": {
            "payments": [{
                "amount": value,
                "payment_method": {"id": "pix", "type": "bank_transfer"},
                "expiration_time": f"PT{expiration}M",
            }],
        },
        "payer": _payer(payer_email, payer_name),
        "items": [{"title": title, "unit_price": value, "quantity": 1, "description": title}],
    }
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
        "X-Idempotency-Key": f"{external_reference}-{now_ms()}",
    }
    url = f"{settings.MERCADOPAGO_API_URL.rstrip('/')}/v1/orders"

    log.info(f"Creating PIX order ({value} {settings.MERCADOPAGO_CURRENCY}, expires in {expiration} min)")
    try:
        async with httpx.AsyncClient(timeout=25.0, transport=transport) as client:
            response = await client.post(url, headers=headers, json=payload)
    except httpx.TimeoutException:
        log.error("Timeout creating PIX order at Mercado Pago.")
        raise ExternalServiceError("Mercado Pago não respondeu a tempo. Tente novamente.")
    except httpx.RequestError as e:
        log.error(f"HTTP request error creating PIX order: {e}")
        raise ExternalServiceError("Não foi possível contatar o Mercado Pago.") from e

    log.debug(f"Mercado Pago response status: {response.status_code}")
    try:
        data: Dict[str, Any] = response.json()
    except json.JSONDecodeError:
        log.error(f"Mercado Pago returned non-JSON response (Status: {response.status_code}): {response.text[:500]}")
        raise ExternalServiceError("Resposta inválida do Mercado Pago.")

    if not response.is_success:
        message = data.get("message") or data.get("error") or f"HTTP {response.status_code}"
        log.error(f"Mercado Pago order failed. Status={response.status_code}, Message='{message}'")
        raise ExternalServiceError(f"Mercado Pago recusou o pagamento: {message}")

    payments = (data.get("transactions") or {}).get("payments") or []
    payment = payments[0] if payments else {}
    method = payment.get("payment_method") or payment
    qr_code = method.get("qr_code") or method.get("qrCode") or ""
    qr_code_base64 = method.get("qr_code_base64") or method.get("qrCodeBase64") or ""
    if not qr_code or not qr_code_base64:
        detail = data.get("message") or data.get("error") or json.dumps(data)[:200]
        log.error(f"PIX QR missing in Mercado Pago response: {detail}")
        raise ExternalServiceError(
            f"Mercado Pago não devolveu o QR PIX. Verifique as chaves PIX no painel do MP. Detalhe: {detail}"
        )

    if not qr_code_base64.startswith("data:"):
        qr_code_base64 = f"data:image/png;base64,{qr_code_base64}"
    log.success(f"PIX order created. Payment id: {payment.get('id')}")
    return PixOrder(
        payment_id=str(payment.get("id") or ""),
        qr_code=qr_code,
        qr_code_base64=qr_code_base64,
        expiration_minutes=expiration,
    )
