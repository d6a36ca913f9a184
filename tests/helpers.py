"""Shared test helpers: fake provider, document builders, log capture."""

import hashlib
import hmac
import json
import logging
from decimal import Decimal
from io import StringIO
from typing import Optional

from planner_api.billing.base import IntentResult, PaymentProvider, VerificationResult
from planner_api.billing.ledger import PaymentRecord
from planner_api.reports.models import NextStep, ReportDocument, TimelineEvent, TimelinePeriod
from planner_api.utils.logging import JSONFormatter

TEST_JWT_SECRET = "test-jwt-secret-0123456789abcdef"


class FakeProvider(PaymentProvider):
    """In-process provider: intents always succeed, verify returns `confirm`."""

    def __init__(self, name: str = "kryptogo", currencies=("USD", "TWD", "USDT", "USDC")):
        super().__init__()
        self.name = name
        self.supported_currencies = frozenset(currencies)
        self.confirm = True
        self.provider_status: Optional[str] = None
        self.intent_error: Optional[Exception] = None
        self.verified_reference: Optional[str] = None
        self.verify_calls: list[str] = []

    async def create_intent(self, payment_id: str, report_id: str, amount: Decimal, currency: str) -> IntentResult:
        if self.intent_error is not None:
            raise self.intent_error
        return IntentResult(
            provider_reference=f"intent_{payment_id}",
            deposit_address="0x00000000000000000000000000000000deadbeef",
        )

    async def verify(self, record: PaymentRecord, proof: str) -> VerificationResult:
        self.verify_calls.append(proof)
        status = self.provider_status or ("success" if self.confirm else "pending")
        return VerificationResult(
            confirmed=self.confirm,
            provider_status=status,
            provider_reference=self.verified_reference or record.provider_reference,
        )


def build_document(periods: int = 10, steps: int = 3) -> ReportDocument:
    timeline = tuple(
        TimelinePeriod(
            period=f"Period {i + 1}",
            events=(TimelineEvent(title=f"Event {i + 1}", category="testing", description="Prep"),),
        )
        for i in range(periods)
    )
    next_steps = tuple(
        NextStep(title=f"Step {i + 1}", description="Do it", priority=i + 1) for i in range(steps)
    )
    return ReportDocument(overview="A focused plan.", timeline=timeline, next_steps=next_steps)


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def json_body(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode()


class LogCapture:
    """Capture JSON-formatted log output for a test block."""

    def __init__(self) -> None:
        self._root = logging.getLogger()
        self._saved: list[logging.Handler] = []
        self._saved_level = logging.NOTSET
        self._stream: Optional[StringIO] = None
        self._handler: Optional[logging.StreamHandler] = None

    def __enter__(self) -> "LogCapture":
        self._saved = self._root.handlers[:]
        self._saved_level = self._root.level
        for h in self._saved:
            self._root.removeHandler(h)
        self._stream = StringIO()
        self._handler = logging.StreamHandler(self._stream)
        self._handler.setFormatter(JSONFormatter())
        self._root.addHandler(self._handler)
        self._root.setLevel(logging.INFO)
        return self

    def __exit__(self, *_) -> None:
        if self._handler:
            self._root.removeHandler(self._handler)
        for h in self._saved:
            self._root.addHandler(h)
        self._root.setLevel(self._saved_level)

    def raw(self) -> str:
        assert self._stream is not None
        return self._stream.getvalue()

    def logs(self) -> list[dict]:
        logs = []
        for line in self.raw().splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                logs.append(json.loads(line))
            except json.JSONDecodeError:
                pass
        return logs

    def events(self) -> list[str]:
        return [entry.get("event") for entry in self.logs() if entry.get("event")]
