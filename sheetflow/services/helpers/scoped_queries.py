"""
Tenant-scoped query helpers.

Every lifecycle operation reaches its sheet through these helpers; child
entities (revisions, value sets, ratings blocks) are then looked up by
sheet_id.  A sheet owned by another tenant is indistinguishable from a
missing one: both raise NotFoundError → HTTP 404, never 403.

Usage:
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)
    sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)

    vs = get_child_scoped(ValueSet, vs_id, sheet_id=sheet.id)
"""

import logging

from sqlalchemy import select

from sheetflow.core.exceptions import NotFoundError
from sheetflow.models import db
from sheetflow.models.sheet import Sheet

logger = logging.getLogger(__name__)


def sheet_belongs_to_tenant(sheet_id: int, tenant_id: int) -> bool:
    """Ownership gate: True only when the sheet exists inside *tenant_id*."""
    if tenant_id is None:
        return False
    stmt = select(Sheet.id).where(Sheet.id == sheet_id, Sheet.tenant_id == tenant_id)
    return db.session.execute(stmt).scalar_one_or_none() is not None


def get_sheet_for_tenant(sheet_id: int, tenant_id: int, *, for_update: bool = False) -> Sheet:
    """Fetch a sheet with mandatory tenant scope.

    Args:
        sheet_id: Sheet PK.
        tenant_id: Caller's tenant. None is refused (unscoped lookup).
        for_update: Take a row lock (SELECT ... FOR UPDATE).  The sheet row
                    is the serialization point for every mutation of the
                    sheet's aggregate.

    Raises:
        ValueError: tenant_id is None.
        NotFoundError: missing sheet OR sheet of another tenant.
    """
    if tenant_id is None:
        raise ValueError(
            f"Sheet id={sheet_id} requires a tenant scope. "
            "Unscoped lookups are forbidden."
        )

    stmt = select(Sheet).where(Sheet.id == sheet_id, Sheet.tenant_id == tenant_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

    sheet = db.session.execute(stmt).scalar_one_or_none()
    if sheet is None:
        logger.debug("get_sheet_for_tenant: sheet id=%s not found for tenant %s", sheet_id, tenant_id)
        raise NotFoundError(resource="Sheet", resource_id=sheet_id, tenant_id=tenant_id)
    return sheet


def get_child_scoped(model, pk: int, *, sheet_id: int, for_update: bool = False):
    """Fetch a sheet-owned row by PK, scoped to its sheet.

    An id belonging to another sheet raises NotFoundError, so an id alone
    never authorizes cross-sheet access.
    """
    stmt = select(model).where(model.id == pk, model.sheet_id == sheet_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_child_scoped: %s id=%s not found on sheet %s", model.__name__, pk, sheet_id)
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result
