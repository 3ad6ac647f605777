from typing import Optional
from sqlalchemy import text
from sqlalchemy.orm import Session
import json

def record_audit(db: Session, project: str, environment: str, feature_key: str, actor: str, action: str,
                 before_state: Optional[dict], after_state: Optional[dict]):
    db.execute(
        text(
            """INSERT INTO audits (project, environment, feature_key, actor, action, before_state, after_state)
            VALUES (:project, :environment, :feature_key, :actor, :action, :before_state, :after_state)"""
        ),
        {
            "project": project,
            "environment": environment,
            "feature_key": feature_key,
            "actor": actor,
            "action": action,
            "before_state": before_state and json.dumps(before_state),
            "after_state": after_state and json.dumps(after_state),
        },
    )

def list_audits(db: Session, project: str, environment: str, feature_key: str) -> list:
    rs = db.execute(
        text(
            """SELECT actor, action, before_state, after_state FROM audits
            WHERE project=:project AND environment=:environment AND feature_key=:feature_key
            ORDER BY created_at"""
        ),
        {"project": project, "environment": environment, "feature_key": feature_key},
    )
    return [
        {
            "actor": row[0],
            "action": row[1],
            "before_state": row[2] and json.loads(row[2]),
            "after_state": row[3] and json.loads(row[3]),
        }
        for row in rs.fetchall()
    ]
