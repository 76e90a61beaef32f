"""
Shared pytest fixtures for the SheetFlow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / other_tenant: Pre-created Tenant ids
    - auth_headers / admin_headers / other_tenant_headers: Bearer tokens
    - make_document: canonical document payload factory
    - sheet: a Draft sheet created through the service layer
"""

import copy

import pytest

from sheetflow import create_app
from sheetflow.models import db as _db
from sheetflow.models.base import Tenant
from sheetflow.services.jwt_service import generate_access_token

ACTOR_ID = 7
REVIEWER_ID = 8
ADMIN_ID = 1

BASE_DOCUMENT = {
    "sheetName": "Pump P-101",
    "sheetDesc": "Cooling water circulation pump",
    "sheetDesc2": None,
    "clientDocNum": 1001,
    "clientProjectNum": 2001,
    "companyDocNum": 3001,
    "companyProjectNum": 4001,
    "areaId": 10,
    "packageName": "PKG-A",
    "revisionNum": 0,
    "revisionDate": "2026-01-15",
    "preparedById": ACTOR_ID,
    "preparedByDate": "2026-01-15",
    "itemLocation": "Unit 100",
    "requiredQty": 2,
    "equipmentName": "Centrifugal pump",
    "equipmentTagNum": "P-101",
    "serviceName": "Cooling water",
    "equipSize": 150,
    "modelNum": None,
    "installPackNum": None,
    "categoryId": 3,
    "clientId": 4,
    "projectId": 5,
    "manuId": 6,
    "suppId": 7,
    "subsheets": [
        {
            "name": "Process Conditions",
            "fields": [
                {"label": "Design flow", "infoType": "decimal", "sortOrder": 1,
                 "required": True, "uom": "m3/h", "value": "120.5"},
                {"label": "Differential head", "infoType": "int", "sortOrder": 2,
                 "required": False, "uom": "m", "value": "45"},
                {"label": "Seal type", "infoType": "varchar", "sortOrder": 3,
                 "required": False, "options": ["single", "double"], "value": None},
            ],
        },
        {
            "name": "Construction",
            "fields": [
                {"label": "Casing material", "infoType": "varchar", "sortOrder": 1,
                 "required": False, "value": "CS"},
            ],
        },
    ],
}


def build_document(**overrides) -> dict:
    doc = copy.deepcopy(BASE_DOCUMENT)
    doc.update(overrides)
    return doc


def field_id_by_label(document: dict, label: str) -> int:
    for sub in document["subsheets"]:
        for f in sub["fields"]:
            if f["label"] == label:
                return f["fieldId"]
    raise KeyError(label)


def set_field_value(document: dict, label: str, value) -> dict:
    doc = copy.deepcopy(document)
    for sub in doc["subsheets"]:
        for f in sub["fields"]:
            if f["label"] == label:
                f["value"] = value
                return doc
    raise KeyError(label)


def _ensure_tenant(slug: str, name: str) -> int:
    t = Tenant.query.filter_by(slug=slug).first()
    if not t:
        t = Tenant(name=name, slug=slug)
        _db.session.add(t)
        _db.session.commit()
    return t.id


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        _ensure_tenant("acme", "Acme Engineering")
        _ensure_tenant("globex", "Globex")
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def tenant():
    return Tenant.query.filter_by(slug="acme").first().id


@pytest.fixture()
def other_tenant():
    return Tenant.query.filter_by(slug="globex").first().id


def _headers(actor_id, tenant_id, roles):
    token = generate_access_token(actor_id, tenant_id, roles)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers(tenant):
    return _headers(ACTOR_ID, tenant, ["engineer"])


@pytest.fixture()
def reviewer_headers(tenant):
    return _headers(REVIEWER_ID, tenant, ["engineer", "reviewer"])


@pytest.fixture()
def admin_headers(tenant):
    return _headers(ADMIN_ID, tenant, ["admin"])


@pytest.fixture()
def other_tenant_headers(other_tenant):
    return _headers(ACTOR_ID, other_tenant, ["engineer", "admin"])


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def make_document():
    return build_document


@pytest.fixture()
def sheet(tenant):
    """A Draft sheet created through the service layer (dict with 'document')."""
    from sheetflow.services.sheet_service import create_sheet
    return create_sheet(tenant, ACTOR_ID, build_document())
