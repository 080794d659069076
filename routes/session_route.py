"""FastAPI routes for provisioning chat sessions."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.session_controller import load_context, load_instructions, start_session

router = APIRouter(prefix="/api/sessions")


class StartPayload(BaseModel):
	metadata: Optional[Dict[str, Any]] = None


class ContextRequest(BaseModel):
	data: Any = None


class InstructionsRequest(BaseModel):
	content: Any = None


@router.post("", status_code=201)
async def start_session_route(request: Request, payload: Optional[StartPayload] = None):
	try:
		return await start_session(request, payload.metadata if payload else None)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/{session_id}/context")
async def load_context_route(request: Request, session_id: str, payload: ContextRequest):
	try:
		return await load_context(request, session_id, payload.data)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/{session_id}/instructions")
async def load_instructions_route(request: Request, session_id: str, payload: InstructionsRequest):
	try:
		return await load_instructions(request, session_id, payload.content)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
