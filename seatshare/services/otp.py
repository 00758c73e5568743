"""
One-time codes gating the physical pickup and dropoff handoffs.

The code lives on the booking's ``Handoff`` record for the phase.  It is
handed to the passenger who holds the booking; the driver types what the
passenger reads out.  A verified code is cleared, so it cannot be replayed.

Lockout is a policy knob (``lockout_after``); by default a wrong code can
be retried indefinitely.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from seatshare.domain.entities import Booking, utcnow
from seatshare.domain.enums import OTPPhase
from seatshare.domain.errors import OTPLocked, OTPMismatch

logger = logging.getLogger(__name__)


def mask_otp(code: Optional[str]) -> str:
    if not code:
        return "<none>"
    return code[:2] + "*" * (len(code) - 2)


class OTPChallengeService:
    def __init__(
        self,
        digits: int = 4,
        lockout_after: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.digits = digits
        self.lockout_after = lockout_after
        self.clock = clock

    def generate(self) -> str:
        return f"{secrets.randbelow(10 ** self.digits):0{self.digits}d}"

    def issue(self, booking: Booking, phase: OTPPhase) -> str:
        handoff = booking.handoff(phase)
        handoff.otp = self.generate()
        handoff.issued_at = self.clock()
        handoff.verified_at = None
        handoff.failed_attempts = 0
        logger.info(
            "Issued %s code %s for booking %s", phase.value, mask_otp(handoff.otp), booking.id
        )
        return handoff.otp

    def verify(self, booking: Booking, phase: OTPPhase, submitted: str) -> None:
        """Consume the code on a match; raise ``OTPMismatch`` otherwise."""
        handoff = booking.handoff(phase)
        if handoff.otp is None:
            raise OTPMismatch(f"No live {phase.value} code for booking {booking.id}")
        if self.lockout_after is not None and handoff.failed_attempts >= self.lockout_after:
            raise OTPLocked(
                f"{phase.value.capitalize()} code for booking {booking.id} is locked "
                f"after {handoff.failed_attempts} failed attempts"
            )

        if not secrets.compare_digest(
            str(submitted).strip().encode(), handoff.otp.encode()
        ):
            handoff.failed_attempts += 1
            logger.warning(
                "Wrong %s code for booking %s (attempt %d)",
                phase.value, booking.id, handoff.failed_attempts,
            )
            raise OTPMismatch(f"Invalid {phase.value} code for booking {booking.id}")

        handoff.otp = None
        handoff.verified_at = self.clock()
