"""
Transaction engine: sign, submit, confirm, resubmit.

Lifecycle of one send():

    BUILDING -> SIGNED -> SUBMITTED -> CONFIRMED_OK | CONFIRMED_ERR | TIMED_OUT

Confirmation is a race between two observers feeding one future: the
network's signature subscription and a status poller. The first final status
wins; the other observer's later result is ignored. While undecided, the
identical signed bytes are resubmitted on a fixed interval (bounded count);
the network dedups by signature.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

from serum_gateway.config.settings import TransactionSettings
from serum_gateway.domain.errors import TransactionRejectedError, TransactionTimeoutError
from serum_gateway.domain.models import (
    BuiltTransaction,
    ConfirmationState,
    PendingTransaction,
    SignatureStatus,
    Wallet,
)
from serum_gateway.observability.logging import LOG_TAG_TX, get_logger
from serum_gateway.observability.metrics import (
    record_confirmation_observer,
    record_tx_outcome,
    record_tx_submission,
)
from serum_gateway.ports.dex import DexSdkPort
from serum_gateway.ports.rpc import RpcPort, Subscription
from serum_gateway.services.cache.reference import BlockReferenceCache

logger = get_logger(__name__)

ErrorCallback = Callable[[BaseException], Any]


class TransactionEngine:
    def __init__(
        self,
        rpc: RpcPort,
        sdk: DexSdkPort,
        wallet: Wallet,
        block_references: BlockReferenceCache,
        settings: TransactionSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._rpc = rpc
        self._sdk = sdk
        self._wallet = wallet
        self._block_references = block_references
        self._settings = settings or TransactionSettings()
        self._clock = clock

    @property
    def settings(self) -> TransactionSettings:
        return self._settings

    async def send(
        self,
        built: BuiltTransaction,
        *,
        kind: str = "transaction",
        timeout_seconds: float | None = None,
        on_error: ErrorCallback | None = None,
    ) -> str:
        """
        Sign and submit `built`, then wait for confirmation.

        Returns the submission id once the network confirms success.

        Raises:
            NetworkUnavailableError: the initial submission failed.
            TransactionTimeoutError: no final status within the timeout.
            TransactionRejectedError: confirmed with an error.

        `on_error` is called exactly once, before the exception propagates,
        when the send does not end in success.
        """
        timeout = timeout_seconds if timeout_seconds is not None else self._settings.confirm_timeout_seconds
        try:
            reference = await self._block_references.get()
            raw = self._sdk.serialize_signed(built, self._wallet, reference)
            try:
                submission_id = await self._rpc.submit_raw_transaction(raw, skip_preflight=True)
            except Exception:
                record_tx_outcome(kind, "submit_failed")
                raise
            record_tx_submission(kind)

            pending = PendingTransaction(raw, submission_id, self._clock())
            logger.info(f"{LOG_TAG_TX} Started sending {kind}: {submission_id}")
            await self._await_confirmation(pending, kind, timeout)
        except Exception as e:
            self._notify(on_error, e)
            raise

        logger.info(
            f"{LOG_TAG_TX} {kind} confirmed: {submission_id} "
            f"(resends={pending.resubmit_count}, {self._clock() - pending.first_submitted_at:.2f}s)"
        )
        return submission_id

    async def _await_confirmation(self, pending: PendingTransaction, kind: str, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        outcome: asyncio.Future[SignatureStatus] = loop.create_future()

        def settle(status: SignatureStatus, observer: str) -> None:
            # First final status wins; anything after is a no-op
            if outcome.done() or not status.is_final:
                return
            outcome.set_result(status)
            record_confirmation_observer(observer)
            logger.debug(f"{LOG_TAG_TX} {pending.submission_id} settled via {observer}: {status.state.value}")

        subscriptions: list[Subscription] = []

        async def subscribe() -> None:
            try:
                subscriptions.append(
                    await self._rpc.subscribe_signature(
                        pending.submission_id, lambda status: settle(status, "subscription")
                    )
                )
            except Exception as e:
                logger.warning(
                    f"{LOG_TAG_TX} Signature subscription failed for {pending.submission_id}, polling only: {e}"
                )

        # Observers start together; a slow subscription setup must not delay polling
        observers = [
            asyncio.create_task(subscribe(), name=f"tx_subscribe:{pending.submission_id}"),
            asyncio.create_task(self._poll(pending, settle), name=f"tx_poll:{pending.submission_id}"),
            asyncio.create_task(self._resend(pending, outcome, kind), name=f"tx_resend:{pending.submission_id}"),
        ]
        try:
            status = await asyncio.wait_for(asyncio.shield(outcome), timeout=max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            elapsed = self._clock() - pending.first_submitted_at
            record_tx_outcome(kind, "timeout", elapsed)
            logger.info(f"{LOG_TAG_TX} Timed out waiting for confirmation of {pending.submission_id}")
            raise TransactionTimeoutError(
                f"Timed out after {timeout:g}s waiting for confirmation of {pending.submission_id}",
                submission_id=pending.submission_id,
            ) from None
        finally:
            if not outcome.done():
                outcome.cancel()
            for task in observers:
                task.cancel()
            await asyncio.gather(*observers, return_exceptions=True)
            for subscription in subscriptions:
                await self._close_subscription(subscription)

        elapsed = self._clock() - pending.first_submitted_at
        if status.state == ConfirmationState.FAILED:
            record_tx_outcome(kind, "rejected", elapsed)
            logger.info(f"{LOG_TAG_TX} {kind} {pending.submission_id} rejected: {status.error}")
            raise TransactionRejectedError(
                f"Transaction {pending.submission_id} failed: {status.error}",
                reason=status.error,
                submission_id=pending.submission_id,
            )
        record_tx_outcome(kind, "confirmed", elapsed)

    async def _poll(self, pending: PendingTransaction, settle: Callable[[SignatureStatus, str], None]) -> None:
        interval = self._settings.poll_interval_seconds
        while True:
            try:
                status = await self._rpc.get_signature_status(pending.submission_id)
            except Exception as e:
                # Transport hiccups do not decide the race; the timeout does
                logger.info(f"{LOG_TAG_TX} Status poll failed for {pending.submission_id}: {e}")
            else:
                settle(status, "poll")
            await asyncio.sleep(interval)

    async def _resend(self, pending: PendingTransaction, outcome: asyncio.Future, kind: str) -> None:
        while pending.resubmit_count < self._settings.max_resends:
            await asyncio.sleep(self._settings.resend_interval_seconds)
            if outcome.done():
                return
            pending.resubmit_count += 1
            record_tx_submission(kind, resend=True)
            try:
                await self._rpc.submit_raw_transaction(pending.raw_bytes, skip_preflight=True)
            except Exception as e:
                logger.warning(f"{LOG_TAG_TX} Resend #{pending.resubmit_count} of {pending.submission_id} failed: {e}")
            else:
                logger.debug(f"{LOG_TAG_TX} Resent {pending.submission_id} (#{pending.resubmit_count})")

    async def _close_subscription(self, subscription: Subscription) -> None:
        try:
            await subscription.close()
        except Exception as e:
            logger.debug(f"{LOG_TAG_TX} Closing signature subscription failed: {e}")

    @staticmethod
    def _notify(on_error: ErrorCallback | None, error: BaseException) -> None:
        if on_error is None:
            return
        try:
            on_error(error)
        except Exception as callback_error:
            logger.warning(f"{LOG_TAG_TX} on_error callback raised: {callback_error}")
