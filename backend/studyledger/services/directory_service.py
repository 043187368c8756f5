# SPDX-License-Identifier: Apache-2.0
"""Participant directory: study registration, membership and repository lookup."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from studyledger.core.exceptions import NotFoundError
from studyledger.core.security import sanitize_text
from studyledger.core.window import WindowConfig
from studyledger.models import Participant, Study, StudyMembership, StudyRepository

logger = logging.getLogger("studyledger")


@dataclass(frozen=True)
class Membership:
    study_id: int
    participant_id: int
    wallet_address: str


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_repo_url(url: str) -> str:
    """``https://github.com/Org/Repo.git/`` -> ``https://github.com/org/repo``."""
    url = url.strip().rstrip("/")
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url.rstrip("/").lower()


class ParticipantDirectory:
    """SQL-backed directory. Registration calls are idempotent."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def find_study_membership(self, participant_email: str, repository_url: str) -> Membership | None:
        """Most recent membership of this email in a study that tracks this repository."""
        email = normalize_email(participant_email)
        repo_url = normalize_repo_url(repository_url)
        with Session(self._engine) as session:
            stmt = (
                select(StudyMembership)
                .join(Participant, StudyMembership.participant_id == Participant.id)
                .join(StudyRepository, StudyRepository.study_id == StudyMembership.study_id)
                .where(
                    Participant.github_email == email,
                    StudyRepository.repo_url == repo_url,
                    StudyRepository.is_active == True,  # noqa: E712
                )
                .order_by(StudyMembership.registered_at.desc(), StudyMembership.id.desc())
            )
            membership = session.exec(stmt).first()
            if membership is None:
                return None
            return Membership(membership.study_id, membership.participant_id, membership.wallet_address)

    def create_study(
        self,
        *,
        name: str,
        ledger_ref: str,
        start_offset_seconds: int,
        end_offset_seconds: int,
        deposit_amount: str = "0",
        penalty_amount: str = "0",
    ) -> tuple[Study, bool]:
        """Validate the window and create the study. Returns (study, created)."""
        WindowConfig(start_offset_seconds, end_offset_seconds).validate()
        ref = ledger_ref.strip().lower()
        with Session(self._engine) as session:
            existing = session.exec(select(Study).where(Study.ledger_ref == ref)).first()
            if existing:
                logger.warning("Study with ledger ref %s already exists", ref)
                return existing, False
            study = Study(
                name=sanitize_text(name, 200),
                ledger_ref=ref,
                start_offset_seconds=start_offset_seconds,
                end_offset_seconds=end_offset_seconds,
                deposit_amount=deposit_amount,
                penalty_amount=penalty_amount,
            )
            session.add(study)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return session.exec(select(Study).where(Study.ledger_ref == ref)).one(), False
            session.refresh(study)
            logger.info("Created study %s (%s) window %s", study.name, ref, study.window.describe())
            return study, True

    def _get_or_create_participant(self, session: Session, email: str) -> Participant:
        participant = session.exec(select(Participant).where(Participant.github_email == email)).first()
        if participant:
            return participant
        participant = Participant(github_email=email)
        session.add(participant)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            return session.exec(select(Participant).where(Participant.github_email == email)).one()
        session.refresh(participant)
        return participant

    def join_study(self, study_id: int, github_email: str, wallet_address: str) -> tuple[StudyMembership, bool]:
        email = normalize_email(github_email)
        with Session(self._engine) as session:
            if session.get(Study, study_id) is None:
                raise NotFoundError(f"Study {study_id} not found")
            participant = self._get_or_create_participant(session, email)
            stmt = select(StudyMembership).where(
                StudyMembership.study_id == study_id,
                StudyMembership.participant_id == participant.id,
            )
            existing = session.exec(stmt).first()
            if existing:
                logger.warning("Participant %s already registered for study %s", email, study_id)
                return existing, False
            membership = StudyMembership(
                study_id=study_id,
                participant_id=participant.id,
                wallet_address=wallet_address.strip().lower(),
            )
            session.add(membership)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return session.exec(stmt).one(), False
            session.refresh(membership)
            logger.info("Registered %s (%s) for study %s", email, membership.wallet_address, study_id)
            return membership, True

    def register_repository(self, study_id: int, github_email: str, repo_url: str) -> tuple[StudyRepository, bool]:
        email = normalize_email(github_email)
        url = normalize_repo_url(repo_url)
        with Session(self._engine) as session:
            participant = session.exec(select(Participant).where(Participant.github_email == email)).first()
            if participant is None:
                raise NotFoundError(f"Participant {email} not found")
            if session.get(Study, study_id) is None:
                raise NotFoundError(f"Study {study_id} not found")
            existing = session.exec(
                select(StudyRepository).where(
                    StudyRepository.study_id == study_id,
                    StudyRepository.repo_url == url,
                    StudyRepository.is_active == True,  # noqa: E712
                )
            ).first()
            if existing:
                logger.warning("Repository already registered: %s for study %s", url, study_id)
                return existing, False
            repo = StudyRepository(study_id=study_id, participant_id=participant.id, repo_url=url)
            session.add(repo)
            session.commit()
            session.refresh(repo)
            logger.info("Registered repository %s for study %s by %s", url, study_id, email)
            return repo, True
