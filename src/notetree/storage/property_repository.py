"""Repository for note and page properties."""
import logging
from typing import Iterable, List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from notetree.models.db_models import DBProperty, utc_now_naive
from notetree.models.schema import OwnerKind, Property, ensure_timezone_aware

logger = logging.getLogger(__name__)


def _owner_column(owner_kind: OwnerKind):
    return DBProperty.note_id if OwnerKind(owner_kind) is OwnerKind.NOTE else DBProperty.page_id


class PropertyRepository:
    """Row-level access to the properties table.

    Properties are multi-valued: nothing here enforces one row per
    (owner, name).
    """

    @staticmethod
    def _db_property_to_model(db_prop: DBProperty) -> Property:
        return Property(
            id=db_prop.id,
            note_id=db_prop.note_id,
            page_id=db_prop.page_id,
            name=db_prop.name,
            value=db_prop.value or "",
            weight=db_prop.weight,
            active=bool(db_prop.active),
            created_at=ensure_timezone_aware(db_prop.created_at),
        )

    def list_active(
        self, session: Session, owner_kind: OwnerKind, owner_id: str
    ) -> List[Property]:
        """Active properties of one owner, oldest first."""
        rows = session.scalars(
            select(DBProperty)
            .where(_owner_column(owner_kind) == owner_id, DBProperty.active.is_(True))
            .order_by(DBProperty.created_at, DBProperty.id)
        )
        return [self._db_property_to_model(p) for p in rows]

    def has_active_value(
        self, session: Session, owner_kind: OwnerKind, owner_id: str, name: str, value: str
    ) -> bool:
        return session.scalar(
            select(DBProperty.id)
            .where(
                _owner_column(owner_kind) == owner_id,
                DBProperty.name == name,
                DBProperty.value == value,
                DBProperty.active.is_(True),
            )
            .limit(1)
        ) is not None

    def add(
        self,
        session: Session,
        owner_kind: OwnerKind,
        owner_id: str,
        name: str,
        value: str,
        weight: float,
    ) -> Property:
        now = utc_now_naive()
        db_prop = DBProperty(
            name=name,
            value=value,
            weight=weight,
            active=True,
            created_at=now,
            updated_at=now,
        )
        if OwnerKind(owner_kind) is OwnerKind.NOTE:
            db_prop.note_id = owner_id
        else:
            db_prop.page_id = owner_id
        session.add(db_prop)
        session.flush()
        return self._db_property_to_model(db_prop)

    def delete_ids(self, session: Session, property_ids: Iterable[int]) -> int:
        ids = list(property_ids)
        if not ids:
            return 0
        result = session.execute(
            delete(DBProperty)
            .where(DBProperty.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def delete_for_owner(self, session: Session, owner_kind: OwnerKind, owner_id: str) -> int:
        """Delete every property row of one owner, active or not."""
        result = session.execute(
            delete(DBProperty)
            .where(_owner_column(owner_kind) == owner_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount
