# disparador/services/recaptcha.py
# Verificação de tokens Google reCAPTCHA v2/v3 no login e no cadastro.

import json
from typing import Literal, Optional, Tuple

import httpx
from loguru import logger

from disparador.core.config import settings
from disparador.core.exceptions import AppError
from disparador.core.logging_config import trace_id_var
from disparador.modules.settings.services import SettingsService

V3_MIN_SCORE = 0.5

async def verify_recaptcha(
    token: str,
    secret_key: str,
    expected_action: Optional[str] = None,
    min_score: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[bool, Optional[str]]:
    """Retorna (ok, erro). Para v3 valida action e score quando informados."""
    log = logger.bind(trace_id=trace_id_var.get(), service="Recaptcha")
    if not token or not secret_key:
        return False, "Token ou chave não informados"

    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            response = await client.post(
                settings.RECAPTCHA_VERIFY_URL, data={"secret": secret_key, "response": token}
            )
        data = response.json()
    except httpx.TimeoutException:
        log.error("Timeout verifying reCAPTCHA token.")
        return False, "Falha ao verificar o reCAPTCHA"
    except httpx.RequestError as e:
        log.error(f"HTTP request error verifying reCAPTCHA: {e}")
        return False, "Falha ao verificar o reCAPTCHA"
    except json.JSONDecodeError:
        log.error(f"reCAPTCHA returned non-JSON response (Status: {response.status_code})")
        return False, "Falha ao verificar o reCAPTCHA"

    if not data.get("success"):
        codes = data.get("error-codes") or []
        log.warning(f"reCAPTCHA rejected: {codes}")
        return False, ", ".join(codes) if codes else "A verificação do reCAPTCHA falhou"
    if expected_action and data.get("action") and data["action"] != expected_action:
        return False, "Ação do reCAPTCHA inválida"
    score = data.get("score")
    if min_score is not None and isinstance(score, (int, float)) and score < min_score:
        return False, "Pontuação do reCAPTCHA muito baixa"
    return True, None

async def ensure_recaptcha(
    settings_service: SettingsService,
    token: Optional[str],
    action: Literal["login", "register"],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """Exige o token quando o reCAPTCHA está ligado nas configurações do sistema."""
    version = await settings_service.get_setting("recaptcha_version") or "off"
    if version not in ("v2", "v3"):
        return
    if not token:
        raise AppError("A verificação de segurança (reCAPTCHA) é obrigatória.")
    secret = await settings_service.get_setting(f"recaptcha_{version}_secret_key")
    if not secret:
        return
    ok, error = await verify_recaptcha(
        token,
        secret,
        expected_action=action,
        min_score=V3_MIN_SCORE if version == "v3" else None,
        transport=transport,
    )
    if not ok:
        raise AppError(error or "A verificação de segurança falhou.")
