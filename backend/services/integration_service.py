"""
Links between chat workspaces (Slack teams, Discord guilds) and projects.
"""
import logging
from typing import Optional

from sqlmodel import select

from backend.persistence.database import get_db_session
from backend.persistence.models import Project, ChatIntegration
from shared.constants import ChatPlatform
from shared.schemas import IntegrationResponse

logger = logging.getLogger(__name__)


def to_integration_response(row: ChatIntegration) -> IntegrationResponse:
    return IntegrationResponse(**row.model_dump())


class IntegrationService:

    def link(
        self,
        platform: str,
        external_id: str,
        project_id: str,
        channel_id: Optional[str] = None,
        webhook_url: Optional[str] = None
    ) -> IntegrationResponse:
        """Link a workspace to a project; relinking replaces the previous project."""
        platform = ChatPlatform(platform).value
        external_id = (external_id or "").strip()
        if not external_id:
            raise ValueError("external_id is required")

        session = get_db_session()
        try:
            if session.get(Project, project_id) is None:
                raise LookupError(f"Project {project_id} not found")

            row = session.exec(
                select(ChatIntegration)
                .where(ChatIntegration.platform == platform)
                .where(ChatIntegration.external_id == external_id)
            ).first()
            if row is None:
                row = ChatIntegration(platform=platform, external_id=external_id, project_id=project_id)
            row.project_id = project_id
            row.channel_id = channel_id
            row.webhook_url = webhook_url
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info(f"[IntegrationService] Linked {platform} {external_id} to project {project_id}")
            return to_integration_response(row)
        finally:
            session.close()

    def resolve_project_id(self, platform: str, external_id: Optional[str]) -> Optional[str]:
        if not external_id:
            return None
        session = get_db_session()
        try:
            row = session.exec(
                select(ChatIntegration)
                .where(ChatIntegration.platform == platform)
                .where(ChatIntegration.external_id == external_id)
            ).first()
            return row.project_id if row else None
        finally:
            session.close()


# Singleton
_integration_service = None


def get_integration_service() -> IntegrationService:
    """Get or create integration service singleton."""
    global _integration_service
    if _integration_service is None:
        _integration_service = IntegrationService()
    return _integration_service
