"""
In-memory store for short-lived verification codes.

Records live only in this process. Expiry is checked lazily when a code is
presented; nothing sweeps the store in the background.
"""
from __future__ import annotations

import asyncio
import hmac
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from ..exceptions import CodeExpiredError, CodeMismatchError, CodeNotFoundError


NUMERIC = string.digits
ALPHANUMERIC = string.ascii_uppercase + string.digits


def normalize_subject(email: str) -> str:
    return str(email or "").strip().lower()


def normalize_code(code: str) -> str:
    return str(code or "").strip().upper()


@dataclass
class VerificationRecord:
    subject_email: str
    code: str
    issued_at: float
    payload: Dict[str, Any] = field(default_factory=dict)


class VerificationCodeStore:
    def __init__(
        self,
        *,
        ttl_seconds: float,
        alphabet: str = NUMERIC,
        length: int = 6,
        clock: Callable[[], float] = time.time,
        random_source: Optional[Any] = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if length <= 0 or not alphabet:
            raise ValueError("code length and alphabet must be non-empty")
        self.ttl_seconds = ttl_seconds
        self.alphabet = alphabet
        self.length = length
        self._clock = clock
        self._random = random_source or secrets.SystemRandom()
        self._records: Dict[str, VerificationRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, email: object) -> bool:
        return normalize_subject(str(email)) in self._records

    def _generate_code(self) -> str:
        return "".join(self._random.choice(self.alphabet) for _ in range(self.length))

    async def issue(self, email: str, payload: Optional[Dict[str, Any]] = None) -> str:
        """Store a fresh code for ``email``, replacing any pending one."""
        subject = normalize_subject(email)
        code = self._generate_code()
        async with self._lock:
            self._records[subject] = VerificationRecord(
                subject_email=subject,
                code=code,
                issued_at=self._clock(),
                payload=dict(payload or {}),
            )
        return code

    async def verify(self, email: str, presented_code: str) -> Dict[str, Any]:
        """
        Consume the pending code for ``email``.

        Returns the payload stored at issuance. A mismatch leaves the record in
        place so the caller may retry; an expired record is removed.
        """
        subject = normalize_subject(email)
        presented = normalize_code(presented_code)
        async with self._lock:
            record = self._records.get(subject)
            if record is None:
                raise CodeNotFoundError("No code found for this email.")

            if self._clock() - record.issued_at > self.ttl_seconds:
                del self._records[subject]
                raise CodeExpiredError("Code expired.")

            if not hmac.compare_digest(record.code.encode(), presented.encode()):
                raise CodeMismatchError("Invalid code.")

            del self._records[subject]
            return dict(record.payload)

    async def discard(self, email: str) -> bool:
        async with self._lock:
            return self._records.pop(normalize_subject(email), None) is not None
