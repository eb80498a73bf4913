"""Persona lookup used to personalize narrative prompts and match identities."""

import json
import logging

from career_stories.models import Persona

logger = logging.getLogger(__name__)


class PersonaService:
    def __init__(self, db_connection):
        self.db = db_connection

    def get_persona(self, user_id: str) -> Persona:
        """Display name, role, company and tool identities (empty persona if unknown)."""
        with self.db.cursor() as cur:
            cur.execute(
                "SELECT display_name, role, company, emails, identities FROM users WHERE id = %s",
                (user_id,),
            )
            row = cur.fetchone()

        if not row:
            logger.debug(f"No persona for user {user_id}")
            return Persona()

        identities = row.get("identities") or {}
        if isinstance(identities, str):
            identities = json.loads(identities)

        return Persona(
            display_name=row.get("display_name") or "",
            role=row.get("role"),
            company=row.get("company"),
            emails=list(row.get("emails") or []),
            identities={
                tool: identity for tool, identity in identities.items() if isinstance(identity, dict)
            },
        )
