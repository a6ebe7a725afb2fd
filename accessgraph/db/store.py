"""SQLAlchemy-backed role graph store.

Inheritance edges live in a single ``role_edges`` table, so parent and child
views of a role can never disagree. Deleting a role removes its own parent
edges only; edges from its children stay behind and dangle.

Mutation and flag listeners run after the surrounding transaction commits, driven by
the session's ``after_commit`` event. A rolled back write notifies nobody.
"""

import logging
from contextlib import contextmanager
from typing import Callable, List, Optional, Sequence

from sqlalchemy import and_, event, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from accessgraph.core.config import get_settings
from accessgraph.core.exceptions import TransientStoreError
from accessgraph.core.flags.models import FeatureFlag
from accessgraph.core.rbac.roles import Role
from accessgraph.db.base import create_session_factory
from accessgraph.db.models import FeatureFlagRecord, RoleEdge, RoleRecord, UserRole
from accessgraph.store.base import RoleGraphStore


logger = logging.getLogger(__name__)

_PENDING_KEY = "accessgraph.pending_notifications"
_ROLE = "role"
_ASSIGNMENT = "assignment"
_FLAG = "flag"


class SqlRoleGraphStore(RoleGraphStore):
    """Role graph store on top of a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        super().__init__()
        self._session_factory = session_factory

    @classmethod
    def from_settings(cls, settings=None, create_tables: bool = False) -> "SqlRoleGraphStore":
        settings = settings or get_settings()
        return cls(create_session_factory(settings.database_url, create_tables=create_tables))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @contextmanager
    def _session(self, tenant_id: Optional[str] = None):
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Role store operation failed (tenant=%s): %s", tenant_id, e)
            raise TransientStoreError(f"Role store operation failed: {e}", tenant_id=tenant_id) from e
        finally:
            session.close()

    @contextmanager
    def _transaction(self, tenant_id: str):
        with self._session(tenant_id) as session:
            event.listen(session, "after_commit", self._after_commit)
            event.listen(session, "after_rollback", self._after_rollback)
            yield session
            session.commit()

    def _after_commit(self, session: Session) -> None:
        for kind, tenant_id, subject_id in session.info.pop(_PENDING_KEY, []):
            if kind == _ROLE:
                self._notify_role_mutated(tenant_id, subject_id)
            elif kind == _FLAG:
                self._notify_flag_changed(tenant_id, subject_id)
            else:
                self._notify_assignment_changed(tenant_id, subject_id)

    def _after_rollback(self, session: Session) -> None:
        session.info.pop(_PENDING_KEY, None)

    @staticmethod
    def _defer(session: Session, kind: str, tenant_id: Optional[str], subject_id: str) -> None:
        pending = session.info.setdefault(_PENDING_KEY, [])
        if (kind, tenant_id, subject_id) not in pending:
            pending.append((kind, tenant_id, subject_id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_role(self, tenant_id: str, role_id: str) -> Optional[Role]:
        with self._session(tenant_id) as db:
            record = self._get_record(db, tenant_id, role_id)
            return self._to_role(db, record) if record is not None else None

    def list_roles(self, tenant_id: str) -> List[Role]:
        with self._session(tenant_id) as db:
            records = db.query(RoleRecord).filter(
                RoleRecord.tenant_id == tenant_id
            ).order_by(RoleRecord.id).all()
            return [self._to_role(db, r) for r in records]

    def get_user_role_ids(self, tenant_id: str, user_id: str) -> Sequence[str]:
        with self._session(tenant_id) as db:
            rows = db.query(UserRole.role_id).filter(
                and_(UserRole.tenant_id == tenant_id, UserRole.user_id == user_id)
            ).order_by(UserRole.position, UserRole.role_id).all()
            return tuple(row.role_id for row in rows)

    def users_with_role(self, tenant_id: str, role_id: str) -> List[str]:
        with self._session(tenant_id) as db:
            rows = db.query(UserRole.user_id).filter(
                and_(UserRole.tenant_id == tenant_id, UserRole.role_id == role_id)
            ).order_by(UserRole.user_id).all()
            return [row.user_id for row in rows]

    def get_feature_flag(self, tenant_id: Optional[str], name: str) -> Optional[FeatureFlag]:
        with self._session(tenant_id) as db:
            record = None
            if tenant_id is not None:
                record = db.query(FeatureFlagRecord).filter(
                    and_(FeatureFlagRecord.name == name, FeatureFlagRecord.tenant_id == tenant_id)
                ).first()
            if record is None:
                record = db.query(FeatureFlagRecord).filter(
                    and_(FeatureFlagRecord.name == name, FeatureFlagRecord.tenant_id.is_(None))
                ).first()
            return self._to_flag(record) if record is not None else None

    def list_feature_flags(self, tenant_id: Optional[str] = None) -> List[FeatureFlag]:
        with self._session(tenant_id) as db:
            scope = FeatureFlagRecord.tenant_id.is_(None)
            if tenant_id is not None:
                scope = scope | (FeatureFlagRecord.tenant_id == tenant_id)
            records = db.query(FeatureFlagRecord).filter(scope).all()
            flags = [self._to_flag(r) for r in records]
        return sorted(flags, key=lambda f: (f.name, f.tenant_id is None))

    @staticmethod
    def _get_record(db: Session, tenant_id: str, role_id: str) -> Optional[RoleRecord]:
        return db.query(RoleRecord).filter(
            and_(RoleRecord.tenant_id == tenant_id, RoleRecord.id == role_id)
        ).first()

    @staticmethod
    def _to_role(db: Session, record: RoleRecord) -> Role:
        parents = db.query(RoleEdge.parent_id).filter(
            and_(RoleEdge.tenant_id == record.tenant_id, RoleEdge.child_id == record.id)
        ).order_by(RoleEdge.position, RoleEdge.parent_id).all()
        children = db.query(RoleEdge.child_id).filter(
            and_(RoleEdge.tenant_id == record.tenant_id, RoleEdge.parent_id == record.id)
        ).order_by(RoleEdge.child_id).all()

        return Role(
            id=record.id,
            tenant_id=record.tenant_id,
            parent_role_ids=[row.parent_id for row in parents],
            child_role_ids=[row.child_id for row in children],
            direct_permissions=record.permissions or (),
            denied_permissions=record.denied_permissions or (),
            priority=record.priority or 0,
            is_active=bool(record.is_active),
            key=record.key or "",
            name=record.name or "",
            description=record.description or "",
            is_system=bool(record.is_system),
            tags=record.tags or (),
            metadata=dict(record.attributes or {}),
        )

    @staticmethod
    def _to_flag(record: FeatureFlagRecord) -> FeatureFlag:
        return FeatureFlag.from_dict({
            "name": record.name,
            "description": record.description or "",
            "enabled": record.enabled,
            "tenant_id": record.tenant_id,
            "rollout_percentage": record.rollout_percentage,
            "target_users": record.target_users or [],
            "target_roles": record.target_roles or [],
            "conditions": record.conditions or [],
        })

    # ------------------------------------------------------------------
    # Role writes
    # ------------------------------------------------------------------

    def save_role(self, role: Role) -> Role:
        """
        Create or replace a role and its parent edges.

        ``child_role_ids`` is ignored: child edges belong to the children's
        parent lists.
        """
        with self._transaction(role.tenant_id) as db:
            self._save(db, role)
            db.flush()
            saved = self._to_role(db, self._get_record(db, role.tenant_id, role.id))
        return saved

    def _save(self, db: Session, role: Role) -> None:
        record = self._get_record(db, role.tenant_id, role.id)
        if record is None:
            record = RoleRecord(tenant_id=role.tenant_id, id=role.id)
            db.add(record)

        record.key = role.key
        record.name = role.name
        record.description = role.description
        record.permissions = sorted(role.direct_permissions)
        record.denied_permissions = sorted(role.denied_permissions)
        record.priority = role.priority
        record.is_active = role.is_active
        record.is_system = role.is_system
        record.tags = list(role.tags)
        record.attributes = dict(role.metadata)

        db.query(RoleEdge).filter(
            and_(RoleEdge.tenant_id == role.tenant_id, RoleEdge.child_id == role.id)
        ).delete(synchronize_session=False)
        for position, parent_id in enumerate(role.parent_role_ids):
            db.add(RoleEdge(
                tenant_id=role.tenant_id, child_id=role.id, parent_id=parent_id, position=position,
            ))

        self._defer(db, _ROLE, role.tenant_id, role.id)

    def delete_role(self, tenant_id: str, role_id: str) -> bool:
        with self._transaction(tenant_id) as db:
            record = self._get_record(db, tenant_id, role_id)
            if record is None:
                return False
            db.delete(record)
            db.query(RoleEdge).filter(
                and_(RoleEdge.tenant_id == tenant_id, RoleEdge.child_id == role_id)
            ).delete(synchronize_session=False)
            self._defer(db, _ROLE, tenant_id, role_id)
        return True

    def add_permission(self, tenant_id: str, role_id: str, permission: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(direct_permissions=r.direct_permissions | {permission}),
        )

    def remove_permission(self, tenant_id: str, role_id: str, permission: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(direct_permissions=r.direct_permissions - {permission}),
        )

    def deny_permission(self, tenant_id: str, role_id: str, permission: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(denied_permissions=r.denied_permissions | {permission}),
        )

    def allow_permission(self, tenant_id: str, role_id: str, permission: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(denied_permissions=r.denied_permissions - {permission}),
        )

    def add_parent_role(self, tenant_id: str, role_id: str, parent_id: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(parent_role_ids=r.parent_role_ids + (parent_id,)),
        )

    def remove_parent_role(self, tenant_id: str, role_id: str, parent_id: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(parent_role_ids=[p for p in r.parent_role_ids if p != parent_id]),
        )

    def set_active(self, tenant_id: str, role_id: str, is_active: bool) -> Role:
        return self._update(tenant_id, role_id, lambda r: r.evolve(is_active=is_active))

    def _update(self, tenant_id: str, role_id: str, change: Callable[[Role], Role]) -> Role:
        with self._transaction(tenant_id) as db:
            record = self._get_record(db, tenant_id, role_id)
            if record is None:
                raise KeyError(f"Role {role_id} not found in tenant {tenant_id}")
            self._save(db, change(self._to_role(db, record)))
            db.flush()
            saved = self._to_role(db, record)
        return saved

    # ------------------------------------------------------------------
    # Assignment and flag writes
    # ------------------------------------------------------------------

    def assign_role(self, tenant_id: str, user_id: str, role_id: str) -> None:
        with self._transaction(tenant_id) as db:
            scope = and_(UserRole.tenant_id == tenant_id, UserRole.user_id == user_id)
            if db.query(UserRole).filter(scope, UserRole.role_id == role_id).first() is not None:
                return
            position = db.query(func.count(UserRole.role_id)).filter(scope).scalar() or 0
            db.add(UserRole(tenant_id=tenant_id, user_id=user_id, role_id=role_id, position=position))
            self._defer(db, _ASSIGNMENT, tenant_id, user_id)

    def unassign_role(self, tenant_id: str, user_id: str, role_id: str) -> None:
        with self._transaction(tenant_id) as db:
            deleted = db.query(UserRole).filter(
                and_(
                    UserRole.tenant_id == tenant_id,
                    UserRole.user_id == user_id,
                    UserRole.role_id == role_id,
                )
            ).delete(synchronize_session=False)
            if deleted:
                self._defer(db, _ASSIGNMENT, tenant_id, user_id)

    def put_feature_flag(self, flag: FeatureFlag) -> FeatureFlag:
        with self._transaction(flag.tenant_id) as db:
            record = self._get_flag_record(db, flag.tenant_id, flag.name)
            if record is None:
                record = FeatureFlagRecord(name=flag.name, tenant_id=flag.tenant_id)
                db.add(record)
            record.description = flag.description
            record.enabled = flag.enabled
            record.rollout_percentage = flag.rollout_percentage
            record.target_users = list(flag.target_users)
            record.target_roles = list(flag.target_roles)
            record.conditions = [c.to_dict() for c in flag.conditions]
            self._defer(db, _FLAG, flag.tenant_id, flag.name)
        logger.debug("Stored feature flag %s (tenant=%s)", flag.name, flag.tenant_id)
        return flag

    def delete_feature_flag(self, tenant_id: Optional[str], name: str) -> bool:
        with self._transaction(tenant_id) as db:
            record = self._get_flag_record(db, tenant_id, name)
            if record is None:
                return False
            db.delete(record)
            self._defer(db, _FLAG, tenant_id, name)
        return True

    @staticmethod
    def _get_flag_record(db: Session, tenant_id: Optional[str], name: str) -> Optional[FeatureFlagRecord]:
        scope = (
            FeatureFlagRecord.tenant_id.is_(None) if tenant_id is None
            else FeatureFlagRecord.tenant_id == tenant_id
        )
        return db.query(FeatureFlagRecord).filter(
            and_(FeatureFlagRecord.name == name, scope)
        ).first()
