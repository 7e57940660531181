# adlotto/core/errors.py
from __future__ import annotations


class LottoError(RuntimeError):
    """Base class for every fault an operation can surface to its caller.

    The operation that raises it has not mutated any state.
    """
    code = "E_LOTTO"
    category = "generic"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)


########################
# Categories
########################

class AuthorizationError(LottoError):
    category = "authorization"

class StateError(LottoError):
    category = "state"

class ResourceError(LottoError):
    category = "resource"

class IntegrityError(LottoError):
    category = "integrity"


########################
# Authorization
########################

class NotOwner(AuthorizationError):
    code = "ENotOwner"

class NotAdmin(AuthorizationError):
    code = "ENotAdmin"

class NotAuthorized(AuthorizationError):
    code = "ENotAuthorized"


########################
# State machine
########################

class WinnerAlreadyPicked(StateError):
    code = "EWinnerAlreadyPicked"

class NoPendingWinner(StateError):
    code = "ENoPendingWinner"

class NoActiveAds(StateError):
    code = "ENoActiveAds"

class VotingClosed(StateError):
    code = "EVotingClosed"

class VotingAlreadyOpen(StateError):
    code = "EVotingAlreadyOpen"

class AlreadyVoted(StateError):
    code = "EAlreadyVoted"

class RewardAlreadyClaimed(StateError):
    code = "ERewardAlreadyClaimed"

class AdInactive(StateError):
    code = "EAdInactive"

class AlreadyRegistered(StateError):
    code = "EAlreadyRegistered"

class NothingToClaim(StateError):
    code = "ENothingToClaim"

class UnknownEntity(StateError):
    code = "EUnknownEntity"

class EpochMismatch(StateError):
    code = "EEpochMismatch"

class VotingStillOpen(StateError):
    code = "EVotingStillOpen"

class RewardsAlreadyDistributed(StateError):
    code = "ERewardsAlreadyDistributed"


########################
# Resources
########################

class InsufficientReserve(ResourceError):
    code = "EInsufficientReserve"

class InsufficientBalance(ResourceError):
    code = "EInsufficientBalance"

class StakeOutOfBounds(ResourceError):
    code = "EStakeOutOfBounds"

# raised for bad input, so it is a ValueError too
class InvalidAmount(ResourceError, ValueError):
    code = "EInvalidAmount"


########################
# Integrity
########################

class WrongWinnerObject(IntegrityError):
    code = "EWrongWinnerObject"

class WrongSessionTarget(IntegrityError):
    code = "EWrongSessionTarget"

class InvalidArgument(IntegrityError, ValueError):
    code = "EInvalidArgument"
