"""Circle Iris attestation polling for xReserve deposits.

After the deposit is mined, Circle's Iris service observes the ``MessageSent``
event and signs the message after finality. We poll
``GET {base}/attestations/{message_hash}`` until the attestation is complete.

Iris is not reliable: it returns 404 before the message is indexed, times out
and throttles. :py:meth:`AttestationPoller.fetch_with_retry` treats all of
these as a failed attempt and backs off exponentially:

.. code-block:: text

    delay(attempt) = min(initial_delay * backoff_multiplier ** attempt, max_delay)

    2s, 4s, 8s, 16s, 32s, 60s, 60s, ...

Example::

    from usdcx_bridge.config import AttestationRetryConfig
    from usdcx_bridge.xreserve.attestation import AttestationPoller
    from usdcx_bridge.xreserve.constants import StacksNetwork

    poller = AttestationPoller(AttestationRetryConfig())
    status = poller.fetch_with_retry(message_hash, StacksNetwork.testnet)
    status.raise_for_failure()
    print(status.attestation)
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

import requests

from usdcx_bridge.config import AttestationRetryConfig
from usdcx_bridge.errors import TransportError
from usdcx_bridge.store import BridgeStore
from usdcx_bridge.utils import create_retrying_session, native_datetime_utc_now
from usdcx_bridge.xreserve.constants import StacksNetwork
from usdcx_bridge.xreserve.types import AttestationState, AttestationStatus

logger = logging.getLogger(__name__)

#: Iris has not indexed the message yet
HTTP_NOT_FOUND = 404

#: Error recorded on a status when the caller gave up
CANCELLED = "cancelled"


class CancellationToken:
    """Let a caller abandon attestation polling.

    Checked before every lookup and every sleep. Sleeping waits on the token,
    so :py:meth:`cancel` wakes up a sleeping poller immediately.
    """

    def __init__(self):
        self.event = threading.Event()

    def cancel(self):
        self.event.set()

    @property
    def cancelled(self) -> bool:
        return self.event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep until timeout or cancel.

        :return:
            True if cancelled
        """
        return self.event.wait(seconds)


@dataclass(slots=True)
class AttestationResponse:
    """One Iris lookup result."""

    #: ``pending`` or ``complete``
    status: str

    #: Hex encoded attestation when complete
    attestation: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.status == "complete" and bool(self.attestation) and self.attestation != "PENDING"


def calculate_backoff_delay(attempt: int, config: AttestationRetryConfig) -> float:
    """Seconds to sleep after a failed attempt.

    :param attempt:
        Zero based attempt index within one polling run
    """
    assert attempt >= 0, f"Got {attempt}"
    delay = config.initial_delay * config.backoff_multiplier**attempt
    return min(delay, config.max_delay)


class AttestationPoller:
    """Poll Iris with exponential backoff and a bounded retry budget."""

    def __init__(
        self,
        config: AttestationRetryConfig | None = None,
        store: BridgeStore | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        """
        :param store:
            Persist progress and cache complete attestations. In-memory store if not given.

        :param session:
            HTTP session. By default one with connection level retries for 429 and 5xx.

        :param sleep:
            Replace the backoff sleep, for tests
        """
        self.config = config or AttestationRetryConfig()
        self.store = store if store is not None else BridgeStore()
        self.session = session or create_retrying_session()
        self.sleep = sleep

    def get_attestation_url(self, message_hash: str, network: StacksNetwork) -> str:
        return f"{self.config.get_api_url(network)}/attestations/{message_hash}"

    def fetch_attestation(self, message_hash: str, network: StacksNetwork) -> AttestationResponse:
        """Single lookup.

        404 is reported as ``pending``.

        :raise TransportError:
            Connection failure, timeout, HTTP error or a response we cannot parse
        """
        url = self.get_attestation_url(message_hash, network)

        try:
            response = self.session.get(url, timeout=self.config.request_timeout)
        except requests.RequestException as e:
            raise TransportError(f"Attestation request to {url} failed: {e}") from e

        if response.status_code == HTTP_NOT_FOUND:
            logger.debug("Attestation for %s not yet indexed (404)", message_hash)
            return AttestationResponse(status="pending")

        if response.status_code >= 400:
            raise TransportError(f"Attestation service returned HTTP {response.status_code} for {url}")

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Attestation service returned invalid JSON for {url}: {e}") from e

        if not isinstance(data, dict):
            raise TransportError(f"Attestation service returned unexpected payload for {url}: {data!r}")

        return AttestationResponse(status=str(data.get("status", "pending")), attestation=data.get("attestation"))

    def fetch_with_retry(
        self,
        message_hash: str,
        network: StacksNetwork,
        max_retries: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> AttestationStatus:
        """Poll until complete, failed or cancelled.

        - A message already complete in the store is returned without network calls
        - ``max_retries + 1`` lookups at most in this run
        - Transport errors and timeouts count as failed attempts, they are not raised
        - Cancellation returns a ``pending`` status with ``cancelled`` error, so polling can be resumed

        :param max_retries:
            Override configured retry budget

        :return:
            Final status. Use :py:meth:`AttestationStatus.raise_for_failure` to turn ``failed`` to an exception.
        """
        if max_retries is None:
            max_retries = self.config.max_retries
        assert max_retries >= 0, f"Got {max_retries}"

        status = self.store.get_attestation_status(message_hash)
        if status is not None and status.is_complete:
            logger.info("Attestation for %s already complete, not polling", message_hash)
            return status

        if status is None:
            status = AttestationStatus(message_hash=message_hash, network=network)
        else:
            logger.info("Resuming attestation polling for %s after %d attempts", message_hash, status.attempts)
            status.network = network
            status.state = AttestationState.pending

        last_error = None

        for attempt in range(max_retries + 1):
            if cancel is not None and cancel.cancelled:
                return self._cancel(status)

            status.state = AttestationState.fetching
            status.attempts += 1
            status.last_attempt_at = native_datetime_utc_now()
            self._save(status)

            logger.info("Polling attestation for %s, attempt %d/%d", message_hash, attempt + 1, max_retries + 1)

            try:
                response = self.fetch_attestation(message_hash, network)
            except TransportError as e:
                logger.warning("Attestation lookup for %s failed: %s", message_hash, e)
                last_error = str(e)
                response = None

            if response is not None and response.is_complete:
                status.state = AttestationState.complete
                status.attestation = response.attestation
                status.error = None
                logger.info("Attestation for %s complete after %d attempts", message_hash, status.attempts)
                return self._save(status)

            if response is not None:
                last_error = None
                logger.debug("Attestation for %s status %s", message_hash, response.status)

            status.state = AttestationState.pending
            status.error = last_error
            self._save(status)

            if attempt == max_retries:
                break

            if cancel is not None and cancel.cancelled:
                return self._cancel(status)

            delay = calculate_backoff_delay(attempt, self.config)
            logger.debug("Sleeping %.1fs before the next attestation lookup", delay)
            self._sleep(delay, cancel)

        status.state = AttestationState.failed
        status.error = f"Attestation not available after {max_retries + 1} lookups"
        if last_error:
            status.error += f", last error: {last_error}"
        logger.error("Giving up attestation polling for %s: %s", message_hash, status.error)
        return self._save(status)

    def _sleep(self, delay: float, cancel: CancellationToken | None):
        if self.sleep is not None:
            self.sleep(delay)
        elif cancel is not None:
            cancel.wait(delay)
        else:
            time.sleep(delay)

    def _cancel(self, status: AttestationStatus) -> AttestationStatus:
        logger.info("Attestation polling for %s cancelled after %d attempts", status.message_hash, status.attempts)
        status.state = AttestationState.pending
        status.error = CANCELLED
        return self._save(status)

    def _save(self, status: AttestationStatus) -> AttestationStatus:
        return self.store.save_attestation_status(status)
