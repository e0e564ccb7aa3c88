from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, HTTPException, status

from judgebox.core.config import get_settings
from judgebox.models.schemas import ExecuteCodeRequest, ExecuteCodeResponse
from judgebox.services.pipeline import CodeSandbox


router = APIRouter()


@lru_cache(maxsize=1)
def get_sandbox() -> CodeSandbox:
    return CodeSandbox(get_settings())


@router.post("/execute", response_model=ExecuteCodeResponse, status_code=status.HTTP_200_OK)
def execute(req: ExecuteCodeRequest) -> ExecuteCodeResponse:
    """Compile the submitted code and run it once per input.

    Failures of the submitted code or of the sandbox are reported in the
    response body; only malformed requests produce an HTTP error.
    """
    settings = get_settings()

    if len(req.inputs) > settings.max_inputs:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"inputs exceeds maximum of {settings.max_inputs} items",
        )

    return get_sandbox().execute(req)
