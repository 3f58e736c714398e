"""
CI Orchestrator - HTTP Server

FastAPI server exposing the release versioning, the release gate and
matrix expansion to other services (bots, dashboards, release tooling).
Nothing here runs jobs; it only computes decisions from the data posted.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from ci_orchestrator import (
    ApiDiff,
    CommitRecord,
    ConfigurationError,
    OrchestratorConfig,
    ReleaseGate,
    VersionArbiter,
    VersionDecision,
    __version__,
)
from ci_orchestrator.config import parse_job
from ci_orchestrator.matrix import expand

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="CI Orchestrator",
    description="Semantic versioning, release gating and job matrix expansion",
    version=__version__,
)

config = OrchestratorConfig.from_env()
arbiter = VersionArbiter(config.policy)
gate = ReleaseGate(config.policy)


# --- Request/Response Models ---


class Commit(BaseModel):
    """A commit since the previous release tag"""

    message: str = Field(..., description="Full commit message")
    sha: str = Field(default="", description="Commit hash")
    timestamp: Optional[str] = Field(default=None, description="ISO commit timestamp")


class VersionRequest(BaseModel):
    """Commits to compute the next version from"""

    previous_tag: Optional[str] = Field(
        default=None, description="Most recent release tag; floor version when omitted"
    )
    commits: List[Commit] = Field(default_factory=list, description="Commits, oldest first")


class VersionResponse(BaseModel):
    previous_version: str
    previous_tag: Optional[str]
    bootstrapped: bool
    bump_level: str
    computed_version: str
    changelog: List[str]
    changelog_text: str


class GateRequest(VersionRequest):
    """Commits plus the API compatibility classification of the change"""

    api_diff: str = Field(..., description="no-change, additive or breaking")


class GateResponse(BaseModel):
    passed: bool
    reason: str
    required_minimum_bump: Optional[str]
    required_marker: Optional[str]
    version: VersionResponse


class MatrixRequest(BaseModel):
    """A job template in configuration-file form"""

    job_id: str = Field(default="job", description="Job identifier")
    job: Dict[str, Any] = Field(..., description="name, run, matrix, tolerant, tolerant_when")


class MatrixInstance(BaseModel):
    name: str
    index: int
    command: str
    axis_assignment: Dict[str, str]
    tolerant: bool


class MatrixResponse(BaseModel):
    job_id: str
    count: int
    instances: List[MatrixInstance]


# --- Helpers ---


def _to_records(commits: List[Commit]) -> List[CommitRecord]:
    records = []
    for commit in commits:
        timestamp = None
        if commit.timestamp:
            try:
                timestamp = datetime.fromisoformat(commit.timestamp.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Invalid commit timestamp: {commit.timestamp}")
        records.append(CommitRecord(sha=commit.sha, message=commit.message, timestamp=timestamp))
    return records


def _decide(request: VersionRequest) -> Tuple[VersionResponse, VersionDecision]:
    try:
        decision = arbiter.decide(_to_records(request.commits), request.previous_tag)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return VersionResponse(
        previous_version=decision.previous_version,
        previous_tag=decision.previous_tag,
        bootstrapped=decision.bootstrapped,
        bump_level=decision.bump_level.name,
        computed_version=decision.computed_version,
        changelog=list(decision.changelog),
        changelog_text=decision.changelog_text,
    ), decision


# --- Endpoints ---


@app.get("/health")
def health() -> Dict[str, str]:
    """Health check endpoint"""
    return {
        "status": "ok",
        "service": config.name,
        "version": __version__,
    }


@app.get("/")
def root() -> Dict[str, Any]:
    """Root endpoint with service info"""
    return {
        "service": config.name,
        "version": __version__,
        "description": "Semantic versioning, release gating and job matrix expansion",
        "policy": config.policy.to_dict(),
    }


@app.post("/version", response_model=VersionResponse)
def version(request: VersionRequest) -> VersionResponse:
    """Compute the next release version and changelog"""
    logger.info(f"Version request: {len(request.commits)} commit(s) since {request.previous_tag}")
    response, _ = _decide(request)
    return response


@app.post("/gate", response_model=GateResponse)
def release_gate(request: GateRequest) -> GateResponse:
    """
    Check that the computed bump covers the API change.

    A blocked release is still a 200 response with passed=false; the
    reason names the commit marker that unblocks it.
    """
    try:
        api_diff = ApiDiff(request.api_diff.lower())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid api_diff: {request.api_diff}. Must be one of: "
                   f"{', '.join(d.value for d in ApiDiff)}",
        )

    version_response, decision = _decide(request)
    result = gate.evaluate(decision, api_diff)

    return GateResponse(
        passed=result.passed,
        reason=result.reason,
        required_minimum_bump=(
            result.required_minimum_bump.name if result.required_minimum_bump is not None else None
        ),
        required_marker=result.required_marker,
        version=version_response,
    )


@app.post("/matrix", response_model=MatrixResponse)
def matrix(request: MatrixRequest) -> MatrixResponse:
    """Expand a job template into its instances"""
    try:
        instances = expand(parse_job(request.job_id, request.job))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return MatrixResponse(
        job_id=request.job_id,
        count=len(instances),
        instances=[
            MatrixInstance(
                name=i.name,
                index=i.index,
                command=i.command,
                axis_assignment={k: str(v) for k, v in i.axis_assignment.items()},
                tolerant=i.tolerant,
            )
            for i in instances
        ],
    )


if __name__ == "__main__":
    import os

    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("ENV", "production") == "development",
    )
