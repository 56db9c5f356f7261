"""Signing provider protocol and a stub implementation.

Vendor adapters (DocuSign, HelloSign, ...) implement ``SignatureProvider``;
the dispatch service uses them without knowing vendor details.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class SignatureRequest:
    """One receipt to be sent for signature."""

    receipt_id: uuid.UUID
    recipient_email: str
    recipient_name: str
    subject: str
    receipt_json: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SignatureResult:
    """Result of creating a signature request."""

    request_id: str
    status: str  # created/sent/delivered/completed
    message: str = ""


class SignatureProvider(Protocol):
    """Protocol for e-signature provider adapters."""

    provider_name: str

    async def send_receipt(self, request: SignatureRequest) -> SignatureResult:
        """Create and send a signature envelope for one receipt.

        Raises on transport or vendor errors; the caller records the failure.
        """
        ...


class SignatureProviderError(Exception):
    """Raised by providers when a request is rejected."""


class StubSignatureProvider:
    """In-memory provider for development, dry runs and tests."""

    provider_name = "stub"

    def __init__(
        self,
        status: str = "sent",
        fail_for: set[str] | None = None,
    ):
        """Initialize stub provider.

        Args:
            status: Status reported for every accepted request.
            fail_for: Recipient emails whose requests are rejected.
        """
        self.status = status
        self.fail_for = set(fail_for or ())
        self.sent: list[SignatureRequest] = []

    async def send_receipt(self, request: SignatureRequest) -> SignatureResult:
        if request.recipient_email in self.fail_for:
            raise SignatureProviderError(f"Recipient rejected: {request.recipient_email}")
        self.sent.append(request)
        return SignatureResult(
            request_id=f"stub-{uuid.uuid4().hex[:12]}",
            status=self.status,
            message="accepted by stub",
        )
