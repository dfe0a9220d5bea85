"""Exceptions raised by the storefront services."""

from __future__ import annotations


class MatchPassError(Exception):
    """Base class for expected, caller-facing service failures."""

    status_code = 400


class MatchNotFoundError(MatchPassError):
    status_code = 404

    def __init__(self, match_id: str) -> None:
        super().__init__(f"Match '{match_id}' not found")
        self.match_id = match_id


class MatchNotBuyableError(MatchPassError):
    status_code = 400


class InvalidPurchaseError(MatchPassError):
    status_code = 422


class AlreadyPurchasedError(MatchPassError):
    status_code = 409

    def __init__(self, match_id: str, buyer: str) -> None:
        super().__init__("Already purchased")
        self.match_id = match_id
        self.buyer = buyer


class RaffleNotFoundError(MatchPassError):
    status_code = 404

    def __init__(self, match_id: str) -> None:
        super().__init__(f"No raffle recorded for match '{match_id}'")
        self.match_id = match_id


class PayoutAlreadySettledError(MatchPassError):
    status_code = 409


class PayoutError(Exception):
    """Transient or configuration failure while transferring the prize."""


class UnknownLeagueError(MatchPassError):
    status_code = 404


class ResultConflictError(MatchPassError):
    """A different final score is already recorded for the match."""

    status_code = 409
