# src/infrastructure/captcha.py
"""
CAPTCHA 검증 capability.
verify()는 예외를 던지지 않고 CaptchaScore | CaptchaError 중 하나를 돌려준다.
호출 측(join)은 CaptchaError를 "의견 없음"으로 취급한다(fail-open).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import httpx

logger = logging.getLogger(__name__)

RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


@dataclass(frozen=True)
class CaptchaScore:
    passed: bool
    score: Optional[float] = None
    action: Optional[str] = None


@dataclass(frozen=True)
class CaptchaError:
    reason: str


CaptchaOutcome = Union[CaptchaScore, CaptchaError]


class CaptchaVerifier(Protocol):
    async def verify(self, token: str, client_ip: Optional[str] = None) -> CaptchaOutcome:
        """토큰 검증. 실패/장애는 CaptchaError 로 표현."""


class RecaptchaVerifier:
    """
    reCAPTCHA v3 siteverify 호출.
    - 비활성화 / 시크릿 미설정 → CaptchaError
    - 점수가 threshold 미만 → CaptchaScore(passed=False)
    """

    def __init__(
        self,
        *,
        secret_key: Optional[str],
        enabled: bool = True,
        threshold: float = 0.5,
        timeout_sec: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.secret_key = secret_key
        self.enabled = enabled
        self.threshold = threshold
        self.timeout_sec = timeout_sec
        self._client = client

    async def verify(self, token: str, client_ip: Optional[str] = None) -> CaptchaOutcome:
        if not self.enabled:
            return CaptchaError("captcha disabled")
        if not self.secret_key:
            return CaptchaError("captcha secret key not configured")

        form = {"secret": self.secret_key, "response": token, "remoteip": client_ip or ""}
        try:
            if self._client is not None:
                resp = await self._client.post(RECAPTCHA_VERIFY_URL, data=form, timeout=self.timeout_sec)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_sec) as client:
                    resp = await client.post(RECAPTCHA_VERIFY_URL, data=form)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("captcha verification transport error: %s", e)
            return CaptchaError(f"verification failed: {e}")

        if not data.get("success"):
            return CaptchaError(",".join(data.get("error-codes") or []) or "rejected")

        score = data.get("score")
        passed = score is None or float(score) >= self.threshold
        return CaptchaScore(passed=passed, score=score, action=data.get("action"))


def load_captcha_verifier() -> Optional[RecaptchaVerifier]:
    if os.getenv("ENABLE_CAPTCHA", "false").lower() not in {"1", "true", "yes", "on"}:
        return None
    try:
        threshold = float(os.getenv("CAPTCHA_THRESHOLD", "0.5"))
    except ValueError:
        threshold = 0.5
    return RecaptchaVerifier(secret_key=os.getenv("RECAPTCHA_SECRET_KEY"), threshold=threshold)
