"""Template catalog endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.dependencies import get_api_key, get_db
from app.schemas.rules import CloneRequest
from ucr.services.templates import TemplateLibrary

router = APIRouter(prefix="/api", tags=["templates"])


@router.get("/orgs/{organization_id}/templates")
def list_templates(
    organization_id: str,
    industry: str | None = Query(None),
    module: str | None = Query(None),
):
    return TemplateLibrary().list_templates(industry=industry, module=module)


@router.get("/orgs/{organization_id}/templates/{template_id}")
def get_template(organization_id: str, template_id: str):
    return TemplateLibrary().get_template(template_id)


@router.post("/orgs/{organization_id}/templates/clone", status_code=201)
def clone_template(
    organization_id: str,
    body: CloneRequest,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    return TemplateLibrary(db).clone(
        organization_id, body.template_id, body.target_smart_code, body.actor
    )
