# sf_oauth_flows/device_poller.py
"""State machine that polls the token endpoint during the device flow.

The poller never sleeps on its own. Each ``tick()`` sends at most one token
request and reports either a terminal status or how long to wait before the
next tick. ``poll_until_complete`` is the scheduler loop on top of it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from .exceptions import InvalidTransitionError
from .flows import DeviceFlow
from .models import (
    DeviceAuthorization,
    DevicePollState,
    DevicePollStatus,
    OutboundRequest,
    OutcomeKind,
    PollTick,
    TokenOutcome,
)
from .token_validator import TokenResponseValidator
from .transport import TransportResponse

logger = logging.getLogger(__name__)

Send = Callable[[OutboundRequest], Awaitable[TransportResponse]]
Sleep = Callable[[float], Awaitable[None]]

# RFC 8628 section 3.5
SLOW_DOWN_INCREMENT = 5

_TERMINAL: List[DevicePollStatus] = [
    DevicePollStatus.AUTHORIZED,
    DevicePollStatus.DENIED,
    DevicePollStatus.EXPIRED,
    DevicePollStatus.CANCELLED,
    DevicePollStatus.FAILED,
]
_FROM_WAITING: List[DevicePollStatus] = [
    DevicePollStatus.PENDING,
    DevicePollStatus.SLOW_DOWN,
    *_TERMINAL,
]

TRANSITIONS: Dict[DevicePollStatus, List[DevicePollStatus]] = {
    DevicePollStatus.PENDING: _FROM_WAITING,
    DevicePollStatus.SLOW_DOWN: _FROM_WAITING,
    **{status: [] for status in _TERMINAL},
}

_TERMINAL_ERRORS = {
    "access_denied": DevicePollStatus.DENIED,
    "expired_token": DevicePollStatus.EXPIRED,
}


class DevicePoller:
    """Advances a DevicePollState one token request at a time."""

    def __init__(
        self,
        flow: DeviceFlow,
        validator: TokenResponseValidator,
        send: Send,
        authorization: DeviceAuthorization,
    ):
        """
        Initialize poller.

        Args:
            flow: Device flow whose context holds the device code
            validator: Classifies each token response
            send: Coroutine executing an OutboundRequest
            authorization: Device authorization returned by the provider
        """
        self.flow = flow
        self.validator = validator
        self._send = send
        self.state = DevicePollState(
            device_code=authorization.device_code,
            interval=authorization.interval,
            verification_uri=authorization.verification_uri,
            user_code=authorization.user_code,
        )
        self._cancelled = False
        self._last_outcome: Optional[TokenOutcome] = None

    @property
    def status(self) -> DevicePollStatus:
        return self.state.status

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Abandon polling. The next tick returns without sending a request."""
        self._cancelled = True

    async def tick(self) -> PollTick:
        """Send one token request, unless polling already ended or was cancelled."""
        if self.status.is_terminal:
            return PollTick(status=self.status, outcome=self._last_outcome)

        if self._cancelled:
            logger.info("Device flow polling cancelled")
            self._transition(DevicePollStatus.CANCELLED)
            return PollTick(status=self.status)

        request = self.flow.build_token_request()
        self.state.attempts += 1
        response = await self._send(request)
        outcome = self.validator.validate(response.body, response.error)
        return self._advance(outcome)

    def _advance(self, outcome: TokenOutcome) -> PollTick:
        if outcome.is_success:
            logger.info("Authorization granted by user")
            return self._finish(DevicePollStatus.AUTHORIZED, outcome)

        if outcome.kind != OutcomeKind.PROVIDER_REJECTION:
            return self._finish(DevicePollStatus.FAILED, outcome)

        if outcome.error == "authorization_pending":
            self._transition(DevicePollStatus.PENDING)
            return PollTick(status=self.status, retry_after=self.state.interval)

        if outcome.error == "slow_down":
            self.state.interval += SLOW_DOWN_INCREMENT
            self.flow.context.poll_interval = self.state.interval
            logger.info(f"Provider asked to slow down, interval {self.state.interval}s")
            self._transition(DevicePollStatus.SLOW_DOWN)
            return PollTick(status=self.status, retry_after=self.state.interval)

        terminal = _TERMINAL_ERRORS.get(outcome.error or "")
        if terminal is not None:
            logger.warning(f"Device flow ended: {outcome.error}")
            outcome = outcome.model_copy(
                update={"kind": OutcomeKind.DEVICE_FLOW_TERMINAL_FAILURE}
            )
            return self._finish(terminal, outcome)

        return self._finish(DevicePollStatus.FAILED, outcome)

    def _finish(self, status: DevicePollStatus, outcome: TokenOutcome) -> PollTick:
        self._transition(status)
        self._last_outcome = outcome
        return PollTick(status=status, outcome=outcome)

    def _transition(self, target: DevicePollStatus) -> None:
        if target not in TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cannot move device poll from {self.status.value} to {target.value}"
            )
        self.state.status = target


async def poll_until_complete(
    poller: DevicePoller, sleep: Sleep = asyncio.sleep
) -> PollTick:
    """
    Tick ``poller`` until it reaches a terminal status.

    Call ``poller.cancel()`` from elsewhere to stop after the current wait.
    """
    while True:
        tick = await poller.tick()
        if tick.done:
            return tick
        await sleep(tick.retry_after or poller.state.interval)
