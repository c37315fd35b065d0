"""
Exception hierarchy for the Tracey core.

Structural errors describe bad or missing input and are surfaced to the
caller (the HTTP layer maps ``status_code`` onto the response). Delivery
errors come from the email/push collaborators and are always absorbed into
the retry queue; they never escape the matching pipeline.
"""

from typing import Optional


class TraceyError(Exception):
    """Base class for all Tracey errors."""


# -----------------------------------------------------------------------------
# Structural errors
# -----------------------------------------------------------------------------


class StructuralError(TraceyError):
    """Bad or missing input. Never retried automatically."""

    status_code: int = 400

    def __init__(self, message: str, *, resource_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id


class ItemNotFound(StructuralError):
    status_code = 404

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item not found: {item_id}", resource_id=item_id)


class MatchNotFound(StructuralError):
    status_code = 404

    def __init__(self, match_id: str) -> None:
        super().__init__(f"Match not found: {match_id}", resource_id=match_id)


class InvalidItemType(StructuralError):
    """The item is on the wrong side of the marketplace for this operation."""


class SelfClaimForbidden(StructuralError):
    """A user tried to claim an item they reported themselves."""

    def __init__(self, item_id: Optional[str] = None) -> None:
        super().__init__("You cannot claim your own item", resource_id=item_id)


class UnauthorizedClaimant(StructuralError):
    """Only the lost-item owner may confirm a match."""

    status_code = 403

    def __init__(self, match_id: Optional[str] = None) -> None:
        super().__init__(
            "Only the lost item owner can claim this match", resource_id=match_id
        )


class InvalidMatchTransition(StructuralError):
    """Requested status change is not allowed from the match's current status."""

    def __init__(self, match_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Match {match_id} is {current}; cannot move to {requested}",
            resource_id=match_id,
        )
        self.current = current
        self.requested = requested


# -----------------------------------------------------------------------------
# Conditions
# -----------------------------------------------------------------------------


class EmbeddingNotReady(TraceyError):
    """
    The item has no embedding yet because AI analysis is still pending.

    Not a failure: matching reports zero matches and the caller retries later.
    """

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item {item_id} has no embedding yet")
        self.item_id = item_id


# -----------------------------------------------------------------------------
# Delivery errors
# -----------------------------------------------------------------------------


class DeliveryError(TraceyError):
    """A notification channel failed to deliver."""


class EmailDeliveryError(DeliveryError):
    """The email provider rejected the message or is not configured."""


class PushDeliveryError(DeliveryError):
    """The push provider could not be reached or is not configured."""
