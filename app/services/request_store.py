"""
Persistence for change requests.

The store is a dumb persistence layer: it never commits and never decides
whether an action is allowed. Transaction boundaries and guards belong to
the WorkflowEngine.
"""
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from app.models.domain import ChangeRequest, Comment, Impact, RequestSequence
from app.models.enums import (
    ChangeRequestCategory,
    ChangeRequestPriority,
    ChangeRequestStatus,
)


REQUEST_NUMBER_PATTERN = re.compile(r"^CR-(\d{4})-(\d+)$")

# Content fields a requester may change while the request is a draft
MUTABLE_FIELDS = (
    "title",
    "description",
    "category",
    "priority",
    "impact_level",
    "justification",
    "proposed_solution",
    "estimated_effort",
    "estimated_cost",
    "target_implementation_date",
)


def format_request_number(year: int, sequence: int) -> str:
    """CR-<year>-<4-digit sequence>; sequences past 9999 simply grow wider."""
    return f"CR-{year}-{sequence:04d}"


def parse_request_number(request_number: str) -> Optional[tuple]:
    match = REQUEST_NUMBER_PATTERN.match(request_number or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


class RequestStore:
    """Reads and writes ChangeRequest rows within the caller's transaction."""

    def __init__(self, db: Session):
        self.db = db

    # Numbering

    def allocate_request_number(self, project_id: str, year: int) -> str:
        """
        Reserve the next request number for a project and year.

        The counter row is incremented in place so concurrent creators are
        serialized by the row lock. The first allocation of a year seeds the
        counter from the highest number already issued, so numbers are never
        reused. A concurrent first allocation surfaces as an IntegrityError
        on flush and the caller retries.
        """
        result = self.db.execute(
            update(RequestSequence)
            .where(RequestSequence.project_id == project_id, RequestSequence.year == year)
            .values(last_value=RequestSequence.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            value = self.db.execute(
                select(RequestSequence.last_value).where(
                    RequestSequence.project_id == project_id,
                    RequestSequence.year == year,
                )
            ).scalar_one()
        else:
            value = self.highest_sequence(project_id, year) + 1
            self.db.add(RequestSequence(project_id=project_id, year=year, last_value=value))
            self.db.flush()

        return format_request_number(year, value)

    def highest_sequence(self, project_id: str, year: int) -> int:
        """Highest sequence already present in request numbers for the year, 0 if none."""
        numbers = self.db.execute(
            select(ChangeRequest.request_number).where(
                ChangeRequest.project_id == project_id,
                ChangeRequest.request_number.like(f"CR-{year}-%"),
            )
        ).scalars()
        highest = 0
        for number in numbers:
            parsed = parse_request_number(number)
            if parsed and parsed[1] > highest:
                highest = parsed[1]
        return highest

    # Writes

    def add(self, change_request: ChangeRequest) -> ChangeRequest:
        self.db.add(change_request)
        self.db.flush()
        return change_request

    def compare_and_set_status(
        self,
        change_request_id: str,
        expected: ChangeRequestStatus,
        new_status: ChangeRequestStatus,
        **values: Any
    ) -> bool:
        """
        Move a request from `expected` to `new_status` only if it is still in `expected`.

        Returns False when another writer changed the status first.
        """
        result = self.db.execute(
            update(ChangeRequest)
            .where(ChangeRequest.id == change_request_id, ChangeRequest.status == expected)
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def update_fields_if_status(
        self,
        change_request_id: str,
        expected: ChangeRequestStatus,
        values: Dict[str, Any]
    ) -> bool:
        """Apply content changes only while the request is still in `expected`."""
        unknown = set(values) - set(MUTABLE_FIELDS) - {"updated_at"}
        if unknown:
            raise ValueError(f"Fields are not mutable: {', '.join(sorted(unknown))}")

        result = self.db.execute(
            update(ChangeRequest)
            .where(ChangeRequest.id == change_request_id, ChangeRequest.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete_if_status(self, change_request_id: str, expected: ChangeRequestStatus) -> bool:
        """
        Delete a request and its impacts and comments if it is still in `expected`.

        Approvals are not touched; none can exist for a draft. On False the
        caller must roll back, since dependent rows may already be gone.
        """
        still_expected = select(ChangeRequest.id).where(
            ChangeRequest.id == change_request_id,
            ChangeRequest.status == expected,
        )
        for model in (Impact, Comment):
            self.db.execute(
                delete(model)
                .where(model.change_request_id.in_(still_expected))
                .execution_options(synchronize_session=False)
            )

        result = self.db.execute(
            delete(ChangeRequest)
            .where(ChangeRequest.id == change_request_id, ChangeRequest.status == expected)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Reads

    def get(self, change_request_id: str, project_id: Optional[str] = None) -> Optional[ChangeRequest]:
        query = self.db.query(ChangeRequest).filter(ChangeRequest.id == change_request_id)
        if project_id is not None:
            query = query.filter(ChangeRequest.project_id == project_id)
        return query.first()

    def list(
        self,
        project_id: str,
        status: Optional[ChangeRequestStatus] = None,
        category: Optional[ChangeRequestCategory] = None,
        priority: Optional[ChangeRequestPriority] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[ChangeRequest]:
        """
        List a project's requests, newest first.

        Filters combine with AND semantics; search is a case-insensitive
        substring match over title, description and request number.
        """
        query = self._filtered(project_id, status, category, priority, search)
        query = query.order_by(ChangeRequest.created_at.desc(), ChangeRequest.request_number.desc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def count(
        self,
        project_id: str,
        status: Optional[ChangeRequestStatus] = None,
        category: Optional[ChangeRequestCategory] = None,
        priority: Optional[ChangeRequestPriority] = None,
        search: Optional[str] = None
    ) -> int:
        return self._filtered(project_id, status, category, priority, search).count()

    def _filtered(self, project_id, status, category, priority, search):
        query = self.db.query(ChangeRequest).filter(ChangeRequest.project_id == project_id)
        if status is not None:
            query = query.filter(ChangeRequest.status == status)
        if category is not None:
            query = query.filter(ChangeRequest.category == category)
        if priority is not None:
            query = query.filter(ChangeRequest.priority == priority)
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(or_(
                func.lower(ChangeRequest.title).like(pattern),
                func.lower(ChangeRequest.description).like(pattern),
                func.lower(ChangeRequest.request_number).like(pattern),
            ))
        return query
