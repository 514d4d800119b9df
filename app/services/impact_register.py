"""Impact register - read-mostly impact assessments attached to a change request."""
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.domain import Impact
from app.models.enums import ImpactArea, ImpactSeverity
from app.utils.time import utc_now


class ImpactRegister:
    """Attaches impact assessments to a change request and lists them."""

    def __init__(self, db: Session):
        self.db = db

    def add_impact(
        self,
        change_request_id: str,
        impact_area: ImpactArea,
        description: Optional[str] = None,
        severity: ImpactSeverity = ImpactSeverity.MEDIUM
    ) -> Impact:
        """Attach an impact. Impacts are never edited afterwards."""
        impact = Impact(
            change_request_id=change_request_id,
            impact_area=impact_area,
            description=description.strip() if description else None,
            severity=severity,
            created_at=utc_now(),
        )
        self.db.add(impact)
        self.db.flush()
        return impact

    def list_impacts(self, change_request_id: str) -> List[Impact]:
        return self.db.query(Impact).filter(
            Impact.change_request_id == change_request_id
        ).order_by(Impact.created_at.asc()).all()
