"""HTTP adapter for a ledger gateway.

The gateway owns the signing keys and turns operation descriptors into
ledger transactions (the contract code and query scripts live there, not in
the core). This client speaks a small JSON protocol:

    POST {base}/v1/operations            body: OperationDescriptor.to_dict()
        -> 202 {"operation_id": "..."}
    GET  {base}/v1/operations/{id}
        -> 200 {"status": "pending" | "sealed" | "failed",
                "error": "...", "result": {...}}
    GET  {base}/v1/escrows?state=&sender=&receiver=&refund_mode=&ids=1,2
        -> 200 [{"id": "1", "sender": "0x..", "amount": "10.0", ...}, ...]

Retries use tenacity:
    - submissions are retried only on connection-establishment errors, where
      the request provably never reached the gateway;
    - finality is polled on a fixed interval until sealed/failed or the
      deadline passes; connection errors and 5xx responses keep polling,
      other 4xx responses end the wait as UnknownLedgerError.

A submission that may have reached the gateway (read timeout, garbled
response) raises UnknownLedgerError rather than SubmissionFailedError, so the
caller treats it as in doubt.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)

from secure_transfer.domain.enums import EscrowState, FinalState, RefundMode, TokenKind
from secure_transfer.domain.exceptions import SubmissionFailedError, UnknownLedgerError
from secure_transfer.domain.models import Escrow, EscrowFilter, FinalityReport
from secure_transfer.logging_config import get_logger

if TYPE_CHECKING:
    from secure_transfer.config import Settings
    from secure_transfer.domain.models import OperationDescriptor

logger = get_logger(__name__)

# Errors raised before any byte of the request left this process.
_NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


def _is_transient_poll_error(exc: BaseException) -> bool:
    """Network hiccups and gateway 5xx: the operation may still seal, keep polling."""
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code >= 500


def _json_body(response: httpx.Response, what: str) -> Any:
    try:
        return response.json()
    except ValueError as err:
        raise UnknownLedgerError(f"Ledger gateway sent a non-JSON {what}: {err}") from err


def escrow_from_payload(payload: dict[str, Any]) -> Escrow:
    """Build an Escrow from the gateway's JSON representation."""
    try:
        token = payload.get("token_kind")
        if token is None:
            token = TokenKind.FLOW if payload.get("is_native_token", True) else TokenKind.USDC
        return Escrow(
            id=str(payload["id"]),
            sender=str(payload["sender"]).lower(),
            receiver=str(payload["receiver"]).lower(),
            amount=Decimal(str(payload["amount"])),
            token_kind=TokenKind(token),
            expiry=float(payload["expiry"]),
            state=EscrowState(payload["state"]),
            refund_mode=RefundMode(str(payload.get("refund_mode", "manual")).lower()),
            created_at=float(payload["created_at"]),
        )
    except (KeyError, ValueError, ArithmeticError) as err:
        raise UnknownLedgerError(f"Malformed escrow record from ledger: {err}") from err


class HttpLedgerClient:
    """LedgerClient backed by the gateway's REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        request_timeout: float = 10.0,
        submission_attempts: int = 3,
        poll_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=request_timeout,
            transport=transport,
        )
        self._submission_attempts = submission_attempts
        self._poll_interval = poll_interval

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpLedgerClient:
        return cls(
            base_url=settings.ledger_url,
            api_key=settings.ledger_api_key,
            request_timeout=settings.ledger_request_timeout_seconds,
            submission_attempts=settings.submission_max_attempts,
            poll_interval=settings.finality_poll_interval_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, operation: OperationDescriptor) -> str:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(_NOT_SENT_ERRORS),
            stop=stop_after_attempt(self._submission_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            reraise=True,
        )
        try:
            response = await retrying(
                self._client.post, "/v1/operations", json=operation.to_dict()
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "ledger.submission_rejected",
                status_code=exc.response.status_code,
                body=exc.response.text[:200],
            )
            raise SubmissionFailedError(
                f"Ledger gateway rejected submission ({exc.response.status_code}): "
                f"{exc.response.text[:200]}"
            ) from exc
        except _NOT_SENT_ERRORS as exc:
            logger.warning("ledger.submission_failed", error=str(exc))
            raise SubmissionFailedError(f"Could not submit operation: {exc}") from exc
        except httpx.HTTPError as exc:
            # The request may have reached the gateway; the caller must not resubmit blindly.
            logger.error("ledger.submission_unconfirmed", error=str(exc))
            raise UnknownLedgerError(f"Submission outcome unknown: {exc}") from exc

        body = _json_body(response, "submission response")
        operation_id = body.get("operation_id") if isinstance(body, dict) else None
        if not operation_id:
            raise SubmissionFailedError("Ledger gateway returned no operation id")
        return str(operation_id)

    # ------------------------------------------------------------------
    # Finality
    # ------------------------------------------------------------------

    async def await_finality(self, operation_id: str, timeout: float) -> FinalityReport:
        retrying = AsyncRetrying(
            retry=retry_if_result(lambda report: report is None)
            | retry_if_exception(_is_transient_poll_error),
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self._poll_interval),
        )
        try:
            return await retrying(self._poll_once, operation_id)
        except RetryError:
            logger.info("ledger.finality_timeout", operation_id=operation_id, timeout=timeout)
            return FinalityReport(status=FinalState.TIMED_OUT)
        except httpx.HTTPError as exc:
            logger.error("ledger.finality_poll_failed", operation_id=operation_id, error=str(exc))
            raise UnknownLedgerError(f"Could not read status of {operation_id}: {exc}") from exc

    async def _poll_once(self, operation_id: str) -> FinalityReport | None:
        """Return a report once the operation is final, else None."""
        response = await self._client.get(f"/v1/operations/{operation_id}")
        if response.status_code == 404:
            return FinalityReport(status=FinalState.FAILED, reason=f"Unknown operation {operation_id}")
        response.raise_for_status()
        body = _json_body(response, "operation status")
        if not isinstance(body, dict):
            raise UnknownLedgerError(f"Malformed status for {operation_id}: {body!r:.200}")
        status = str(body.get("status", "pending")).lower()
        if status == "sealed":
            return FinalityReport(status=FinalState.SEALED, result=body.get("result") or {})
        if status == "failed":
            return FinalityReport(status=FinalState.FAILED, reason=body.get("error") or "unknown error")
        return None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query_escrows(self, escrow_filter: EscrowFilter | None = None) -> list[Escrow]:
        escrow_filter = escrow_filter or EscrowFilter()
        params: dict[str, str] = {}
        if escrow_filter.ids is not None:
            params["ids"] = ",".join(sorted(escrow_filter.ids))
        if escrow_filter.state is not None:
            params["state"] = escrow_filter.state.value
        if escrow_filter.sender is not None:
            params["sender"] = escrow_filter.sender
        if escrow_filter.receiver is not None:
            params["receiver"] = escrow_filter.receiver
        if escrow_filter.refund_mode is not None:
            params["refund_mode"] = escrow_filter.refund_mode.value

        try:
            response = await self._client.get("/v1/escrows", params=params)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("ledger.query_failed", error=str(exc))
            raise UnknownLedgerError(f"Escrow query failed: {exc}") from exc

        items = _json_body(response, "escrow list")
        if not isinstance(items, list):
            raise UnknownLedgerError("Malformed escrow list from ledger")
        escrows = [escrow_from_payload(item) for item in items]
        # The gateway may ignore filters it doesn't support; apply them again.
        return [e for e in escrows if escrow_filter.matches(e)]
