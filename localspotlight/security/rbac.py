from fastapi import Request, HTTPException, status
from sqlalchemy.orm import Session

from ..models import OrgMember, Org, User
from .auth import AuthUser

OWNER_ROLES = {"owner", "admin"}
EDITOR_ROLES = {"owner", "admin", "editor"}
MEMBER_ROLES = {"owner", "admin", "editor", "viewer"}

SELECTED_ORG_COOKIE = "selected-org-id"


class PermissionDenied(HTTPException):
    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def get_membership(db: Session, org_id: str, user_id: str) -> OrgMember | None:
    return db.query(OrgMember).filter(
        OrgMember.org_id == org_id,
        OrgMember.user_id == user_id,
    ).first()


def has_role(db: Session, org_id: str, user_id: str, roles=MEMBER_ROLES) -> bool:
    membership = get_membership(db, org_id, user_id)
    return bool(membership and membership.role in roles)


def require_role(db: Session, org_id: str, user_id: str, roles=MEMBER_ROLES) -> OrgMember:
    """
    Return the caller's membership in `org_id`, raising PermissionDenied when the
    user is not a member or their role is not one of `roles`.
    """
    membership = get_membership(db, org_id, user_id)
    if not membership:
        raise PermissionDenied("You do not have access to this organization")
    if membership.role not in roles:
        raise PermissionDenied("Insufficient permissions")
    return membership


def list_user_orgs(db: Session, user_id: str) -> list[tuple[Org, str]]:
    rows = (
        db.query(Org, OrgMember.role)
        .join(OrgMember, OrgMember.org_id == Org.id)
        .filter(OrgMember.user_id == user_id)
        .order_by(Org.created_at.asc(), Org.name.asc())
        .all()
    )
    return [(org, role) for org, role in rows]


def resolve_selected_org(request: Request, db: Session, user: AuthUser) -> tuple[Org | None, str | None]:
    """
    Pick the org a page works against: `?orgId=` first, then the
    selected-org cookie, then the user's first membership. Orgs the user does
    not belong to are ignored.
    """
    orgs = list_user_orgs(db, user.id)
    if not orgs:
        return None, None

    by_id = {org.id: (org, role) for org, role in orgs}
    for candidate in (request.query_params.get("orgId"), request.cookies.get(SELECTED_ORG_COOKIE)):
        if candidate and candidate in by_id:
            return by_id[candidate]
    return orgs[0]


def ensure_user_profile(db: Session, user: AuthUser) -> User:
    """Create the `users` row mirroring the hosted auth user when it is missing."""
    profile = db.get(User, user.id)
    if profile:
        return profile

    profile = User(id=user.id, email=user.email or "", name=user.metadata.get("name"))
    db.add(profile)
    db.flush()
    return profile
