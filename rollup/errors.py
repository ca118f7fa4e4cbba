"""
Error Taxonomy for the Rollup Engine

Every engine failure derives from RollupError, which is a ValueError so that
API layers can keep treating engine rejections as validation failures.
"""


class RollupError(ValueError):
    """Base class for all engine errors."""


class InvalidPlanConfiguration(RollupError):
    """Malformed tiers, out-of-range rates or a missing field for the plan type."""


class MissingInputError(RollupError):
    """A required evaluation input (e.g. hours worked) was not supplied."""


class IneligibleSourceError(RollupError):
    """A non-approved change order was used as a revenue or invoice source."""


class OverpaymentError(RollupError):
    """Payments would exceed the total they are applied against."""


class ConsistencyError(RollupError):
    """A commission record's balance_owed does not match calculated - paid."""


class InvalidTransitionError(RollupError):
    """A lifecycle action is not allowed from the record's current status."""


class MissingSignatureError(InvalidTransitionError):
    """A change order cannot be approved until its required signers have signed."""


class NotFoundError(RollupError):
    """A referenced record does not exist in the store."""
