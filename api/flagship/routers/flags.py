from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from sqlalchemy import text
from sqlalchemy.orm import Session
from flagship.database import SessionLocal
from flagship.schemas import FlagCreate, FlagUpdate, FlagOut, EvaluateRequest, FlagsResponse, EvaluationResult
from flagship.cache import get_flag_cache, set_flag_cache, delete_flag_cache, publish_update
from flagship.logging_config import get_logger
from flagship.models import Flag, UserContext
from flagship.services.targeting import evaluate_flag
from flagship.services.audit import record_audit, list_audits
from flagship.metrics import EVALS
import json

router = APIRouter(prefix="/api/v1", tags=["flags"])
log = get_logger(__name__)

FLAGS_PATH = "/projects/{project}/environments/{environment}/flags"
SELECT_FLAG = ("SELECT project, environment, key, description, type, enabled, value, targeting, version "
               "FROM flags WHERE project=:p AND environment=:e")

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def _load_json(value):
    # Postgres drivers may hand back decoded JSON, SQLite always returns text
    if isinstance(value, str):
        return json.loads(value)
    return value

def row_to_flag(row) -> dict:
    return {
        "project": row[0],
        "environment": row[1],
        "key": row[2],
        "description": row[3],
        "type": row[4],
        "enabled": bool(row[5]),
        "value": _load_json(row[6]),
        "targeting": _load_json(row[7]),
        "version": row[8],
    }

def _fetch_flag(db: Session, project: str, environment: str, key: str) -> Optional[dict]:
    row = db.execute(text(SELECT_FLAG + " AND key=:k"), {"p": project, "e": environment, "k": key}).fetchone()
    return row_to_flag(row) if row else None

def _require_flag(db: Session, project: str, environment: str, key: str) -> dict:
    item = _fetch_flag(db, project, environment, key)
    if item is None:
        raise HTTPException(status_code=404, detail="flag not found")
    return item

def _dump_targeting(targeting) -> Optional[str]:
    if targeting is None:
        return None
    return json.dumps(targeting.model_dump(by_alias=True))

@router.post("/flags", response_model=FlagsResponse)
def evaluate_flags(payload: EvaluateRequest, db: Session = Depends(get_db)):
    user = UserContext(id=payload.user.id, attributes=dict(payload.user.attributes))
    rs = db.execute(text(SELECT_FLAG + " ORDER BY key"), {"p": payload.project, "e": payload.environment})
    flags = {}
    for row in rs.fetchall():
        flag = Flag.from_dict(row_to_flag(row))
        result = evaluate_flag(flag, user)
        EVALS.labels(flag.key, str(result.enabled)).inc()
        flags[flag.key] = {"enabled": result.enabled, "value": result.value, "type": flag.type}
    log.debug(
        "flags_evaluated",
        project=payload.project,
        environment=payload.environment,
        count=len(flags),
        anonymous=not user.id,
    )
    return {"flags": flags, "user": payload.user.model_dump()}

@router.get(FLAGS_PATH, response_model=List[FlagOut])
def list_flags(project: str, environment: str, db: Session = Depends(get_db)):
    rs = db.execute(text(SELECT_FLAG + " ORDER BY key"), {"p": project, "e": environment})
    return [row_to_flag(r) for r in rs.fetchall()]

@router.get(FLAGS_PATH + "/{key}", response_model=FlagOut)
def get_flag(project: str, environment: str, key: str, db: Session = Depends(get_db)):
    cached = get_flag_cache(project, environment, key)
    if cached:
        return cached
    item = _require_flag(db, project, environment, key)
    set_flag_cache(project, environment, key, item)
    return item

@router.post(FLAGS_PATH, response_model=FlagOut, status_code=201)
def create_flag(project: str, environment: str, payload: FlagCreate, request: Request, db: Session = Depends(get_db)):
    actor = request.headers.get("X-Actor", "anonymous")
    if _fetch_flag(db, project, environment, payload.key) is not None:
        raise HTTPException(status_code=409, detail="flag already exists")
    db.execute(
        text("""INSERT INTO flags (project, environment, key, description, type, enabled, value, targeting, version)
                VALUES (:project, :environment, :key, :description, :type, :enabled, :value, :targeting, 1)"""),
        {
            "project": project,
            "environment": environment,
            "key": payload.key,
            "description": payload.description,
            "type": payload.type,
            "enabled": payload.enabled,
            "value": json.dumps(payload.value),
            "targeting": _dump_targeting(payload.targeting),
        }
    )
    db.commit()
    item = _require_flag(db, project, environment, payload.key)
    set_flag_cache(project, environment, payload.key, item)
    publish_update(project, environment, payload.key)
    record_audit(db, project, environment, payload.key, actor, "create", before_state=None, after_state=item)
    db.commit()
    log.info("flag_created", project=project, environment=environment, key=payload.key, actor=actor)
    return item

@router.put(FLAGS_PATH + "/{key}", response_model=FlagOut)
def update_flag(project: str, environment: str, key: str, payload: FlagUpdate, request: Request,
                db: Session = Depends(get_db)):
    actor = request.headers.get("X-Actor", "anonymous")
    before = _require_flag(db, project, environment, key)
    sent = payload.model_fields_set

    # Merge; value and targeting may be cleared explicitly with null
    description = payload.description if payload.description is not None else before["description"]
    flag_type = payload.type if payload.type is not None else before["type"]
    enabled = payload.enabled if payload.enabled is not None else before["enabled"]
    value = payload.value if "value" in sent else before["value"]
    if "targeting" in sent:
        targeting = _dump_targeting(payload.targeting)
    else:
        targeting = before["targeting"] and json.dumps(before["targeting"])
    new_version = before["version"] + 1

    db.execute(
        text("""UPDATE flags
                 SET description=:description,
                     type=:type,
                     enabled=:enabled,
                     value=:value,
                     targeting=:targeting,
                     version=:version,
                     updated_at=CURRENT_TIMESTAMP
                 WHERE project=:project AND environment=:environment AND key=:key"""),
        {
            "description": description,
            "type": flag_type,
            "enabled": enabled,
            "value": json.dumps(value),
            "targeting": targeting,
            "version": new_version,
            "project": project,
            "environment": environment,
            "key": key,
        }
    )
    db.commit()
    item = _require_flag(db, project, environment, key)
    set_flag_cache(project, environment, key, item)
    publish_update(project, environment, key)
    record_audit(db, project, environment, key, actor, "update", before_state=before, after_state=item)
    db.commit()
    log.info("flag_updated", project=project, environment=environment, key=key, actor=actor, version=new_version)
    return item

@router.delete(FLAGS_PATH + "/{key}", status_code=204)
def delete_flag(project: str, environment: str, key: str, request: Request, db: Session = Depends(get_db)):
    actor = request.headers.get("X-Actor", "anonymous")
    before = _require_flag(db, project, environment, key)
    db.execute(
        text("DELETE FROM flags WHERE project=:p AND environment=:e AND key=:k"),
        {"p": project, "e": environment, "k": key},
    )
    db.commit()
    delete_flag_cache(project, environment, key)
    publish_update(project, environment, key)
    record_audit(db, project, environment, key, actor, "delete", before_state=before, after_state=None)
    db.commit()
    log.info("flag_deleted", project=project, environment=environment, key=key, actor=actor)
    return

@router.get(FLAGS_PATH + "/{key}/audits")
def get_audits(project: str, environment: str, key: str, db: Session = Depends(get_db)):
    return list_audits(db, project, environment, key)

@router.get(FLAGS_PATH + "/{key}/evaluate", response_model=EvaluationResult)
def evaluate(project: str, environment: str, key: str, request: Request, user_id: Optional[str] = Query(None),
             db: Session = Depends(get_db)):
    # Collect attributes from query params (except user_id)
    attributes = {k: v for k, v in request.query_params.items() if k != "user_id"}
    cached = get_flag_cache(project, environment, key)
    if cached is None:
        cached = _require_flag(db, project, environment, key)
        set_flag_cache(project, environment, key, cached)
    flag = Flag.from_dict(cached)

    result = evaluate_flag(flag, UserContext(id=user_id, attributes=attributes))
    EVALS.labels(key, str(result.enabled)).inc()
    return {"key": key, "enabled": result.enabled, "value": result.value, "type": flag.type, "version": flag.version}
