# SPDX-License-Identifier: Apache-2.0
"""Participant-related endpoints (studies listing by participant)."""
from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from studyledger.container import Container, get_container
from studyledger.core.clock import isoformat_utc
from studyledger.models import Participant, Study, StudyMembership
from studyledger.services.directory_service import normalize_email

router = APIRouter(tags=["participants"])


@router.get("/{github_email}/studies")
def participant_studies(github_email: str, container: Container = Depends(get_container)):
    """Studies the participant is registered in, most recent first."""
    with Session(container.engine) as session:
        rows = session.exec(
            select(StudyMembership, Study)
            .join(Study, StudyMembership.study_id == Study.id)
            .join(Participant, StudyMembership.participant_id == Participant.id)
            .where(Participant.github_email == normalize_email(github_email))
            .order_by(StudyMembership.registered_at.desc())
        ).all()
        return [
            {
                "study_id": study.id,
                "name": study.name,
                "ledger_ref": study.ledger_ref,
                "wallet_address": m.wallet_address,
                "registered_at": isoformat_utc(m.registered_at),
            }
            for m, study in rows
        ]
