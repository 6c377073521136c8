from typing import Literal, Optional

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from meeting_analyst.services.analyst_agent import AnalystAgent, AnalystRegistry


class CreateAnalystRequest(BaseModel):
    meeting_id: str = Field(..., min_length=1)
    meeting_url: str = ""
    custom_instructions: Optional[str] = None
    prompt_strategy: Literal["direct", "generated"] = "generated"


class UtteranceSegment(BaseModel):
    speaker: Optional[str] = None
    text: Optional[str] = None
    timestamp: Optional[float] = None  # epoch seconds


class UtteranceBatchRequest(BaseModel):
    segments: list[UtteranceSegment]


def create_analysis_router(registry: AnalystRegistry) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("analyst.api.analysis")

    def _get_agent(meeting_id: str) -> AnalystAgent:
        agent = registry.get(meeting_id)
        if agent is None:
            raise HTTPException(status_code=404, detail="Analyst not found")
        return agent

    @router.get("/api/analysis")
    def list_analyses() -> list[dict]:
        return [agent.status() for agent in registry.list()]

    @router.post("/api/analysis")
    def register_analyst(payload: CreateAnalystRequest) -> dict:
        logger.debug("register_analyst received: meeting_id=%s", payload.meeting_id)
        try:
            agent = registry.create(
                payload.meeting_id,
                meeting_url=payload.meeting_url,
                custom_instructions=payload.custom_instructions,
                prompt_strategy=payload.prompt_strategy,
            )
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return agent.status()

    @router.get("/api/analysis/{meeting_id}")
    def get_analysis(meeting_id: str) -> dict:
        return _get_agent(meeting_id).get_analysis()

    @router.get("/api/analysis/{meeting_id}/formatted", response_class=PlainTextResponse)
    def get_formatted_analysis(meeting_id: str) -> str:
        return _get_agent(meeting_id).get_formatted_analysis()

    @router.post("/api/analysis/{meeting_id}/utterances")
    def ingest_utterances(meeting_id: str, payload: UtteranceBatchRequest) -> dict:
        agent = _get_agent(meeting_id)
        batch = [segment.model_dump(exclude_none=True) for segment in payload.segments]
        accepted = agent.process_utterance(batch)
        return {"accepted": accepted, "entries": agent.status()["entries"]}

    @router.post("/api/analysis/{meeting_id}/cycle")
    def trigger_cycle(meeting_id: str) -> dict:
        scheduled = _get_agent(meeting_id).request_cycle()
        logger.info("Manual cycle request meeting_id=%s scheduled=%s", meeting_id, scheduled)
        return {"scheduled": scheduled}

    @router.delete("/api/analysis/{meeting_id}")
    def remove_analyst(meeting_id: str) -> dict:
        if not registry.remove(meeting_id):
            raise HTTPException(status_code=404, detail="Analyst not found")
        return {"removed": meeting_id}

    return router
