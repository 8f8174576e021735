"""
Planning of delegation changes.

An account carries a single delegation designator. Moving it to a new
implementation is always done as revoke-then-authorize, each step confirmed
before the next one is signed; a direct overwrite is never planned.
"""
import logging
from typing import List, Optional

from eth_utils import to_checksum_address

from .delegation import DelegationDesignator, DesignatorKind
from .models import AuthorizationAction, AuthorizationStep, ZERO_ADDRESS

logger = logging.getLogger(__name__)

REVOKE = AuthorizationStep(action=AuthorizationAction.REVOKE, target=ZERO_ADDRESS)


class AuthorizationPlanner:
    """
    Decide which authorization steps bring an account to a target.

    | Current          | Plan                      |
    |------------------|---------------------------|
    | None             | authorize(T)              |
    | Delegated(T)     | (nothing)                 |
    | Delegated(X≠T)   | revoke, authorize(T)      |
    | Unknown          | revoke, authorize(T)      |
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def plan(self, designator: DelegationDesignator, target: str) -> List[AuthorizationStep]:
        """
        Plan the steps that delegate an account to ``target``.

        Args:
            designator: The account's current designator
            target: Implementation the account must delegate to

        Returns:
            Ordered steps; empty if the account already points at ``target``

        Raises:
            ValueError: If ``target`` is the zero address
        """
        target = to_checksum_address(target)
        if target == ZERO_ADDRESS:
            raise ValueError("Cannot plan an authorization to the zero address; use plan_revocation")

        authorize = AuthorizationStep(action=AuthorizationAction.AUTHORIZE, target=target)

        if designator.kind == DesignatorKind.NONE:
            steps = [authorize]
        elif designator.points_to(target):
            steps = []
        else:
            # Delegated elsewhere, or code we do not recognize
            steps = [REVOKE, authorize]

        self.logger.debug(f"Plan from {designator} to {target}: {[str(s) for s in steps]}")
        return steps

    def plan_revocation(self, designator: DelegationDesignator) -> List[AuthorizationStep]:
        """Plan the steps that restore a plain account"""
        if designator.kind == DesignatorKind.NONE:
            return []
        return [REVOKE]
