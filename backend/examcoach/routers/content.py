# examcoach/routers/content.py
from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends

from examcoach import access_policy, auth, schemas
from examcoach.access_guard import require_active_access, require_feature
from examcoach.dependencies import get_clock
from examcoach.models import Account

router = APIRouter(tags=["content"])


# -------------------------------------------------
# ACCESS CHECK (AUTH-ONLY, NEVER LOCKED)
# -------------------------------------------------
@router.get("/access", response_model=schemas.AccessOut)
def evaluate_access(
    account: Account = Depends(auth.get_current_account),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return access_policy.decision_payload(account, clock())


# -------------------------------------------------
# PREMIUM CONTENT (LOCKED)
# -------------------------------------------------
@router.get("/content/quizzes", dependencies=[Depends(require_active_access)])
def list_quizzes():
    return {"ok": True, "items": [], "feature": access_policy.FEATURE_BASIC_QUIZZES}


@router.get("/content/study-materials", dependencies=[Depends(require_active_access)])
def list_study_materials():
    return {"ok": True, "items": [], "feature": access_policy.FEATURE_STUDY_MATERIALS}


@router.get(
    "/content/offline-pack",
    dependencies=[Depends(require_feature(access_policy.FEATURE_OFFLINE_ACCESS))],
)
def offline_pack():
    return {"ok": True, "items": [], "feature": access_policy.FEATURE_OFFLINE_ACCESS}
