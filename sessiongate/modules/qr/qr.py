"""
Login challenge rendering.

Only the raw challenge string is ever stored; images are produced on demand.
"""

import io
import logging
from typing import Callable

import qrcode

from ..session.errors import ChallengeNotAvailable
from ..session.models import Session, SessionState

logger = logging.getLogger(__name__)


def _build(challenge: str, border: int = 1) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=border,
    )
    qr.add_data(challenge)
    qr.make(fit=True)
    return qr


def encode_challenge(challenge: str) -> bytes:
    """Render a challenge string as a PNG image."""
    if not challenge:
        raise ValueError("Cannot encode an empty challenge")
    img = _build(challenge).make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def render_ascii(challenge: str) -> str:
    """Render a challenge as terminal text for operator consoles."""
    out = io.StringIO()
    _build(challenge, border=2).print_ascii(out=out, invert=True)
    return out.getvalue()


class QRChannel:
    """Pull-based projection of a session's pending challenge."""

    def __init__(self, lookup: Callable[[str], Session]):
        """
        Args:
            lookup: Returns the current session snapshot or raises SessionNotFound
        """
        self._lookup = lookup

    def challenge(self, session_id: str) -> str:
        """
        Current challenge string.

        Raises:
            SessionNotFound: Unknown session
            ChallengeNotAvailable: Session is not waiting for a challenge scan
        """
        session = self._lookup(session_id)
        if session.state != SessionState.AWAITING_CHALLENGE or not session.challenge:
            raise ChallengeNotAvailable(session_id)
        return session.challenge

    def image(self, session_id: str) -> bytes:
        """PNG rendering of the current challenge."""
        return encode_challenge(self.challenge(session_id))
