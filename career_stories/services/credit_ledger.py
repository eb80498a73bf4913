"""
Credit Ledger

Metered-feature credits held in user_wallets. Subscription credits are spent
before purchased credits.

Consumption is a single conditional UPDATE guarded by the combined balance,
so two concurrent requests can never both pass and overdraw the wallet.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from career_stories.errors import InvalidInputError

logger = logging.getLogger(__name__)

FEATURE_DERIVE_STORY = "derive_story"
FEATURE_DERIVE_PACKET = "derive_packet"

FEATURE_COSTS: Dict[str, int] = {
    FEATURE_DERIVE_STORY: 1,
    FEATURE_DERIVE_PACKET: 2,
}


@dataclass
class Affordability:
    allowed: bool
    cost: int
    balance: int


class CreditLedger:
    """Reads balances and consumes credits for metered features."""

    def __init__(self, db_connection, feature_costs: Optional[Dict[str, int]] = None):
        self.db = db_connection
        self.feature_costs = dict(feature_costs or FEATURE_COSTS)

    def cost_of(self, feature_code: str) -> int:
        if feature_code not in self.feature_costs:
            raise InvalidInputError(f"Unknown feature code: {feature_code}")
        return self.feature_costs[feature_code]

    def balance(self, user_id: str) -> int:
        with self.db.cursor() as cur:
            cur.execute(
                """
                SELECT subscription_credits + purchased_credits AS balance
                FROM user_wallets
                WHERE user_id = %s
                """,
                (user_id,),
            )
            row = cur.fetchone()
        return int(row["balance"]) if row else 0

    def can_afford(self, user_id: str, feature_code: str) -> Affordability:
        cost = self.cost_of(feature_code)
        balance = self.balance(user_id)
        return Affordability(allowed=balance >= cost, cost=cost, balance=balance)

    def consume(self, user_id: str, feature_code: str) -> bool:
        """
        Deduct the feature's cost in one conditional decrement.

        Returns:
            True when credits were deducted, False when the balance was
            insufficient at the moment of the update
        """
        cost = self.cost_of(feature_code)
        if cost == 0:
            return True

        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE user_wallets SET
                    subscription_credits = subscription_credits - LEAST(subscription_credits, %(cost)s),
                    purchased_credits = purchased_credits - (%(cost)s - LEAST(subscription_credits, %(cost)s)),
                    updated_at = NOW()
                WHERE user_id = %(user_id)s
                  AND subscription_credits + purchased_credits >= %(cost)s
                RETURNING subscription_credits + purchased_credits AS balance
                """,
                {"cost": cost, "user_id": user_id},
            )
            row = cur.fetchone()
            if row is None:
                logger.info(f"Credit consumption refused for user {user_id} ({feature_code}, cost {cost})")
                return False

            cur.execute(
                """
                INSERT INTO wallet_transactions (user_id, feature_code, amount, balance_after)
                VALUES (%s, %s, %s, %s)
                """,
                (user_id, feature_code, -cost, row["balance"]),
            )

        logger.debug(f"Consumed {cost} credits for {feature_code} (user {user_id}, balance {row['balance']})")
        return True
