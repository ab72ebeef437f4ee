import os

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from roadworks.core.auth import get_current_user
from roadworks.core.config import settings
from roadworks.core.db import get_db
from roadworks.core.deps import get_actor, get_engine
from roadworks.core.errors import NotFound
from roadworks.models.evidence import Evidence
from roadworks.models.user import User
from roadworks.schemas.work_order import EvidenceDecisionRequest
from roadworks.services import read_model
from roadworks.services.capabilities import Actor
from roadworks.services.lifecycle import LifecycleEngine

router = APIRouter(prefix="/evidence", tags=["evidence"])


def _get_evidence(db: Session, evidence_id: str) -> Evidence:
    ev = db.query(Evidence).filter(Evidence.id == evidence_id).first()
    if not ev:
        raise NotFound("Evidence", evidence_id)
    return ev


@router.get("/{evidence_id}")
def get_evidence(evidence_id: str, db: Session = Depends(get_db), _user: User = Depends(get_current_user)):
    return read_model.evidence_summary(_get_evidence(db, evidence_id))


@router.post("/{evidence_id}/decision")
def decide_evidence(
    evidence_id: str,
    payload: EvidenceDecisionRequest,
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    # The role comes from the token; a body claim can only narrow it
    if payload.user_role and payload.user_role.upper() != actor.role:
        raise HTTPException(status_code=403, detail="userRole does not match the authenticated role")

    ev = engine.decide_evidence(
        evidence_id, payload.decision, actor, notes=payload.notes, expected=payload.expected
    )
    return read_model.evidence_summary(ev)


@router.get("/{evidence_id}/download")
def download_evidence(evidence_id: str, db: Session = Depends(get_db), _user: User = Depends(get_current_user)):
    ev = _get_evidence(db, evidence_id)

    abs_path = os.path.abspath(ev.file_ref)
    uploads_abs = os.path.abspath(settings.UPLOAD_DIR)
    if not abs_path.startswith(uploads_abs + os.sep):
        raise HTTPException(status_code=400, detail="Invalid file path")

    if not os.path.exists(abs_path):
        raise HTTPException(status_code=404, detail="File missing on server")

    return FileResponse(path=abs_path, media_type=ev.mime_type, filename=ev.file_name or os.path.basename(abs_path))
