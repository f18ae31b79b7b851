from __future__ import annotations

from fastapi import APIRouter, Depends

from sheetpilot.deps import get_chat_session

router = APIRouter(prefix="/v1", tags=["operations"])


@router.get("/operations")
async def list_operations(session=Depends(get_chat_session)):
    return {
        "operations": [
            {
                "name": operation.name,
                "description": operation.description,
                "mutating": operation.mutating,
                "input_schema": operation.argument_schema,
            }
            for operation in session.dispatcher.registry.list()
        ]
    }
