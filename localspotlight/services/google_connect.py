"""
Persisting a Google Business Profile connection for an org: encrypted
refresh tokens in `connections_google`, the accounts they can see in
`gbp_accounts` and every location of those accounts in `gbp_locations`.
"""
from sqlalchemy.orm import Session

from ..logging_setup import log_event
from ..models import GoogleConnection, GbpAccount, GbpLocation
from ..security.encryption import decrypt_refresh_token, encrypt_refresh_token
from .google_business import GoogleApiError, list_locations, location_title
from .google_oauth import refresh_access_token


class ConnectError(Exception):
    """Carries the `status` code shown on the integrations page."""

    def __init__(self, status: str, message: str | None = None):
        super().__init__(message or status)
        self.status = status


def upsert_connections(db: Session, org_id: str, accounts: list[dict], refresh_token: str, scopes: list[str]):
    encrypted = encrypt_refresh_token(refresh_token)
    for account in accounts:
        account_name = account.get("name") or "unknown-account"
        connection = db.query(GoogleConnection).filter(
            GoogleConnection.org_id == org_id,
            GoogleConnection.account_id == account_name,
        ).first()
        if connection:
            connection.refresh_token_enc = encrypted
            connection.scopes = scopes
        else:
            db.add(GoogleConnection(org_id=org_id, account_id=account_name,
                                    refresh_token_enc=encrypted, scopes=scopes))
    db.flush()


def upsert_accounts(db: Session, org_id: str, accounts: list[dict]) -> dict[str, GbpAccount]:
    """Returns the stored accounts keyed by `accounts/{id}` resource name."""
    stored: dict[str, GbpAccount] = {}
    for account in accounts:
        account_name = account.get("name") or "unknown-account"
        row = db.query(GbpAccount).filter(
            GbpAccount.org_id == org_id,
            GbpAccount.google_account_name == account_name,
        ).first()
        display_name = account.get("accountName") or account.get("name") or "Google Account"
        if row:
            row.display_name = display_name
        else:
            row = GbpAccount(org_id=org_id, google_account_name=account_name, display_name=display_name)
            db.add(row)
        stored[account_name] = row
    db.flush()
    return stored


def upsert_locations(db: Session, org_id: str, account: GbpAccount, locations: list[dict]) -> int:
    count = 0
    for location in locations:
        name = location.get("name") or "unknown-location"
        meta = {
            "placeId": (location.get("metadata") or {}).get("placeId"),
            "labels": location.get("labels") or [],
        }
        row = db.query(GbpLocation).filter(
            GbpLocation.org_id == org_id,
            GbpLocation.google_location_name == name,
        ).first()
        if row:
            row.account_id = account.id
            row.title = location_title(location)
            row.meta = {**(row.meta or {}), **meta}
        else:
            db.add(GbpLocation(org_id=org_id, account_id=account.id, google_location_name=name,
                               title=location_title(location), meta=meta))
        count += 1
    db.flush()
    return count


def store_locations(db: Session, org_id: str, access_token: str, accounts: dict[str, GbpAccount]) -> int:
    """
    Fetch and store locations for every account. A failing account is logged
    and skipped so the others still land.
    """
    total = 0
    for account_name, account in accounts.items():
        try:
            locations = list_locations(access_token, account_name)
        except GoogleApiError as e:
            log_event("google_locations_fetch_failed", level="warning", org_id=org_id,
                      account=account_name, error=str(e))
            continue
        total += upsert_locations(db, org_id, account, locations)
    return total


def resync_locations(db: Session, org_id: str) -> int:
    """Refresh `gbp_locations` for every stored account using the org's connections."""
    connections = db.query(GoogleConnection).filter(GoogleConnection.org_id == org_id).all()
    if not connections:
        raise ConnectError("no_connections")

    accounts = {a.google_account_name: a for a in db.query(GbpAccount).filter(GbpAccount.org_id == org_id).all()}
    if not accounts:
        raise ConnectError("account_sync_failed")

    total = 0
    for connection in connections:
        account = accounts.get(connection.account_id)
        if not account:
            continue
        access_token = refresh_access_token(decrypt_refresh_token(connection.refresh_token_enc))
        try:
            locations = list_locations(access_token, account.google_account_name)
        except GoogleApiError as e:
            raise ConnectError("locations_failed", str(e)) from e
        total += upsert_locations(db, org_id, account, locations)

    db.commit()
    log_event("google_locations_resynced", org_id=org_id, locations=total)
    return total


def set_managed_locations(db: Session, org_id: str, managed_ids: set[str], scope_ids: set[str] | None = None) -> int:
    """
    Mark the org's locations in `managed_ids` as managed and the rest as not.
    With `scope_ids` only those locations are updated. Returns how many of the
    updated locations are managed.
    """
    query = db.query(GbpLocation).filter(GbpLocation.org_id == org_id)
    if scope_ids is not None:
        query = query.filter(GbpLocation.id.in_(scope_ids))

    managed = 0
    for location in query.all():
        location.is_managed = location.id in managed_ids
        managed += int(location.is_managed)
    db.commit()
    return managed


def disconnect_google(db: Session, org_id: str):
    db.query(GoogleConnection).filter(GoogleConnection.org_id == org_id).delete(synchronize_session=False)
    for location in db.query(GbpLocation).filter(GbpLocation.org_id == org_id).all():
        location.account_id = None
    db.flush()
    db.query(GbpAccount).filter(GbpAccount.org_id == org_id).delete(synchronize_session=False)
    db.commit()
    log_event("google_disconnected", org_id=org_id)
