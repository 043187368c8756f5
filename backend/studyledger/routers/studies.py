# SPDX-License-Identifier: Apache-2.0
"""Study endpoints: create, list, get, join, register repository, participants."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from studyledger.container import Container, get_container
from studyledger.core.clock import isoformat_utc
from studyledger.models import Participant, Study, StudyMembership, StudyRepository
from studyledger.schemas import RepositoryRegister, StudyCreate, StudyJoin

router = APIRouter(tags=["studies"])


def study_dict(study: Study) -> dict:
    window = study.window
    return {
        "id": study.id,
        "name": study.name,
        "ledger_ref": study.ledger_ref,
        "start_offset_seconds": study.start_offset_seconds,
        "end_offset_seconds": study.end_offset_seconds,
        "window": window.describe(),
        "overnight": window.overnight,
        "deposit_amount": study.deposit_amount,
        "penalty_amount": study.penalty_amount,
        "created_at": isoformat_utc(study.created_at),
    }


@router.post("")
def studies_create(body: StudyCreate, container: Container = Depends(get_container)):
    """Create a study. The window is validated here, never at commit time."""
    study, created = container.directory.create_study(
        name=body.name,
        ledger_ref=body.ledger_ref,
        start_offset_seconds=body.start_offset_seconds,
        end_offset_seconds=body.end_offset_seconds,
        deposit_amount=body.deposit_amount,
        penalty_amount=body.penalty_amount,
    )
    return {"study_id": study.id, "created": created, "study": study_dict(study)}


@router.get("")
def studies_list(container: Container = Depends(get_container)):
    with Session(container.engine) as session:
        studies = session.exec(select(Study).order_by(Study.created_at.desc())).all()
        return [study_dict(s) for s in studies]


@router.get("/{study_id}")
def studies_get(study_id: int, container: Container = Depends(get_container)):
    with Session(container.engine) as session:
        study = session.get(Study, study_id)
        if not study:
            raise HTTPException(status_code=404, detail="Study not found")
        return study_dict(study)


@router.post("/{study_id}/join")
def studies_join(study_id: int, body: StudyJoin, container: Container = Depends(get_container)):
    membership, created = container.directory.join_study(study_id, body.github_email, body.wallet_address)
    return {
        "membership_id": membership.id,
        "study_id": membership.study_id,
        "wallet_address": membership.wallet_address,
        "created": created,
    }


@router.post("/{study_id}/repositories")
def studies_register_repository(study_id: int, body: RepositoryRegister, container: Container = Depends(get_container)):
    repo, created = container.directory.register_repository(study_id, body.github_email, body.repo_url)
    return {"repository_id": repo.id, "repo_url": repo.repo_url, "created": created}


@router.get("/{study_id}/participants")
def studies_participants(study_id: int, container: Container = Depends(get_container)):
    with Session(container.engine) as session:
        if session.get(Study, study_id) is None:
            raise HTTPException(status_code=404, detail="Study not found")
        rows = session.exec(
            select(StudyMembership, Participant)
            .join(Participant, StudyMembership.participant_id == Participant.id)
            .where(StudyMembership.study_id == study_id)
            .order_by(StudyMembership.registered_at)
        ).all()
        repos = session.exec(select(StudyRepository).where(StudyRepository.study_id == study_id)).all()
        by_participant: dict[int, list[str]] = {}
        for repo in repos:
            by_participant.setdefault(repo.participant_id, []).append(repo.repo_url)
        return [
            {
                "github_email": p.github_email,
                "wallet_address": m.wallet_address,
                "registered_at": isoformat_utc(m.registered_at),
                "repositories": by_participant.get(p.id, []),
            }
            for m, p in rows
        ]
