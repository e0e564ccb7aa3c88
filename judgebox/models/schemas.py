from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


class ExecuteStatus(IntEnum):
    SUCCESS = 1
    SANDBOX_ERROR = 2
    RUNTIME_ERROR = 3
    COMPILE_ERROR = 4


class ExecuteCodeRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: StrictStr = Field(..., description="Source code to compile and run.")
    language: StrictStr = Field("python", description="Language profile to build and run with.")
    inputs: list[StrictStr] = Field(
        default_factory=list,
        description="One run per item. An empty list only compiles the code.",
    )


class JudgeInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: StrictInt = Field(0, ge=0, description="Maximum elapsed milliseconds across runs.")


class ExecuteCodeResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status: ExecuteStatus
    output_list: list[StrictStr] = Field(default_factory=list, alias="outputList")
    message: StrictStr | None = None
    judge_info: JudgeInfo = Field(default_factory=JudgeInfo, alias="judgeInfo")
