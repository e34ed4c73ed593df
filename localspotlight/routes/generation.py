from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models import AiGeneration
from ..schemas import GenerationSnapshot
from ..security.auth import AuthUser, bearer_matches, require_user
from ..security.rbac import get_membership
from ..services.llm import AiService, get_ai_service
from ..services.post_generation import run_post_automation
from .posts import error_response

router = APIRouter(tags=["generation"])


@router.post("/api/automation/generate-posts")
def generate_posts_cron(
    request: Request,
    db: Session = Depends(get_db),
    ai: AiService = Depends(get_ai_service),
):
    # Open when no secret is configured, matching local development.
    if settings.automation_cron_secret and not bearer_matches(request, settings.automation_cron_secret):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    return run_post_automation(db, ai)


@router.get("/api/generation-status")
def generation_status(
    gen: str | None = Query(None),
    user: AuthUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not gen:
        return error_response(400, "Missing generation id")

    generation = db.get(AiGeneration, gen)
    # Generations outside the caller's orgs are reported as missing.
    if not generation or not get_membership(db, generation.org_id, user.id):
        return error_response(404, "Generation not found")

    return {"snapshot": GenerationSnapshot.model_validate(generation).model_dump(mode="json"), "events": []}
