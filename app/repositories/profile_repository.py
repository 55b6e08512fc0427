"""
Profile lookups (plan, admin flag, billing ids) and the owner-editable details.
"""

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from app.infrastructure.observability.logging import get_logger
from app.services.plans import Plan, normalize_plan

logger = get_logger(__name__)


class ProfileRepository:
    SELECT_COLUMNS = "id, email, display_name, plan, is_admin, stripe_customer_id, created_at"
    DETAIL_COLUMNS = """
        id, email, display_name, first_name, last_name, country, city, phone, plan, created_at
    """

    @classmethod
    async def get(cls, user_id: str) -> dict | None:
        return await fetch_one(f"SELECT {cls.SELECT_COLUMNS} FROM profiles WHERE id = %s", (user_id,))

    @classmethod
    async def get_details(cls, user_id: str) -> dict | None:
        return await fetch_one(f"SELECT {cls.DETAIL_COLUMNS} FROM profiles WHERE id = %s", (user_id,))

    @classmethod
    async def update_details(
        cls,
        user_id: str,
        first_name: str | None,
        last_name: str | None,
        country: str,
        city: str | None,
        phone: str | None,
    ) -> dict | None:
        """
        Overwrite the owner-editable fields. display_name follows the name
        fields and keeps its value when both are empty.
        """
        display_name = " ".join(part for part in (first_name, last_name) if part) or None
        row = await fetch_one(
            f"""
            UPDATE profiles
            SET first_name = %s,
                last_name = %s,
                country = %s,
                city = %s,
                phone = %s,
                display_name = COALESCE(%s, display_name)
            WHERE id = %s
            RETURNING {cls.DETAIL_COLUMNS}
            """,
            (first_name, last_name, country, city, phone, display_name, user_id),
        )
        if row:
            logger.info("Profile updated", user_id=user_id)
        return row

    @classmethod
    async def get_plan(cls, user_id: str) -> Plan:
        plan = await fetch_val("SELECT plan FROM profiles WHERE id = %s", (user_id,))
        return normalize_plan(plan)

    @classmethod
    async def get_email(cls, user_id: str) -> str | None:
        return await fetch_val("SELECT email FROM profiles WHERE id = %s", (user_id,))

    @classmethod
    async def is_admin(cls, user_id: str) -> bool:
        value = await fetch_val("SELECT is_admin FROM profiles WHERE id = %s", (user_id,))
        return bool(value)

    @classmethod
    async def list_with_checkins(cls, limit: int = 50, offset: int = 0) -> list[dict]:
        """Admin listing: profiles with their check-in status."""
        return await fetch_all(
            """
            SELECT p.id, p.email, p.plan, p.is_admin, p.created_at,
                   c.status AS checkin_status, c.attempts AS checkin_attempts,
                   c.last_confirmed_at, c.next_due_at
            FROM profiles p
            LEFT JOIN checkins c ON c.user_id = p.id
            ORDER BY p.created_at DESC
            LIMIT %s OFFSET %s
            """,
            (limit, offset),
        )

    @classmethod
    async def update_plan_for_customer(cls, customer_id: str, plan: Plan) -> str | None:
        """Set the plan of the profile linked to a Stripe customer. Returns its id."""
        row = await fetch_one(
            """
            UPDATE profiles
            SET plan = %s
            WHERE stripe_customer_id = %s
            RETURNING id
            """,
            (plan, customer_id),
        )
        if not row:
            logger.warning("No profile for Stripe customer", customer_id=customer_id)
            return None
        logger.info("Plan updated", user_id=str(row["id"]), plan=plan)
        return str(row["id"])

    @classmethod
    async def activate_subscription(
        cls, user_id: str, customer_id: str | None, subscription_id: str | None
    ) -> bool:
        """Checkout completed: link the Stripe ids and upgrade to pro."""
        affected = await execute_query(
            """
            UPDATE profiles
            SET plan = 'pro',
                stripe_customer_id = COALESCE(%s, stripe_customer_id),
                stripe_subscription_id = COALESCE(%s, stripe_subscription_id)
            WHERE id = %s
            """,
            (customer_id, subscription_id, user_id),
        )
        if affected:
            logger.info("Subscription activated", user_id=user_id)
        return affected > 0
