# SPDX-License-Identifier: Apache-2.0
"""Pydantic request/response schemas."""
from datetime import datetime

from pydantic import BaseModel, Field as PydanticField


class StudyCreate(BaseModel):
    name: str = PydanticField(..., max_length=200)
    ledger_ref: str = PydanticField(..., min_length=1, max_length=66)
    start_offset_seconds: int
    end_offset_seconds: int
    deposit_amount: str = "0"
    penalty_amount: str = "0"


class StudyJoin(BaseModel):
    github_email: str = PydanticField(..., max_length=254)
    wallet_address: str = PydanticField(..., min_length=1, max_length=66)


class RepositoryRegister(BaseModel):
    github_email: str = PydanticField(..., max_length=254)
    repo_url: str = PydanticField(..., max_length=500)


class SessionFail(BaseModel):
    reason: str = PydanticField(..., min_length=1, max_length=500)


class GitHubAuthor(BaseModel):
    name: str = ""
    email: str = ""


class GitHubCommit(BaseModel):
    id: str
    message: str = ""
    timestamp: datetime
    author: GitHubAuthor


class GitHubRepository(BaseModel):
    html_url: str = ""
    full_name: str = ""


class GitHubPushPayload(BaseModel):
    zen: str | None = None
    commits: list[GitHubCommit] = []
    repository: GitHubRepository | None = None
