"""
FastAPI server exposing the symptom classifier hooks.
Each endpoint is a thin wrapper that runs an external predictor process and
returns its output base64-encoded.
"""

import base64
import subprocess
from typing import List, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictFloat, StrictInt, StrictStr

from symptomcal.errors import HealthModelError
from symptomcal.logging_helper import Log
from symptomcal.settings_manager import get_model_command

PREDICTOR_TIMEOUT_SECONDS = 60

app = FastAPI(
    title="SymptomCal Hooks",
    description="Server-side hooks for the physical and mental symptom models",
    version="1.0.0"
)


# Request/Response models
class PhysicalModelRequest(BaseModel):
    symptoms: List[StrictStr]


class MentalModelRequest(BaseModel):
    symptoms: List[StrictStr]
    age: Union[StrictInt, StrictFloat]
    gender: StrictStr


class ModelResult(BaseModel):
    message: str
    result: str


_INVALID_BODY_MESSAGES = {
    "/physical-model/": "Invalid symptoms data",
    "/mental-model/": "Invalid data",
}


@app.exception_handler(RequestValidationError)
async def invalid_body_handler(request: Request, exc: RequestValidationError):
    message = _INVALID_BODY_MESSAGES.get(request.url.path, "Invalid data")
    Log.warn(f"Rejected request to {request.url.path}: {message}")
    Log.kv({"stage": "hook", "path": request.url.path, "result": "rejected"})
    return JSONResponse(status_code=400, content={"error": message})


def run_predictor(command: List[str], args: List[str]) -> str:
    """
    Run a predictor process and return its stdout base64-encoded.

    Raises:
        HealthModelError: if the process cannot start, times out or exits non-zero
    """
    full_command = list(command) + list(args)
    Log.info(f"Running predictor: {full_command}")
    try:
        completed = subprocess.run(
            full_command,
            capture_output=True,
            timeout=PREDICTOR_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        Log.error(f"Predictor failed to run: {e}")
        raise HealthModelError(str(e)) from e

    if completed.returncode != 0:
        stderr = completed.stderr.decode("utf-8", errors="replace")[:500]
        Log.error(f"Predictor exited with {completed.returncode}: {stderr}")
        raise HealthModelError(f"predictor exited with {completed.returncode}")

    Log.kv({"stage": "hook", "result": "success", "stdout_bytes": len(completed.stdout)})
    return base64.b64encode(completed.stdout).decode("ascii")


@app.get("/hello/")
def hello():
    """Health check endpoint."""
    return {"message": "SymptomCal hooks are running"}


@app.post("/physical-model/", response_model=ModelResult)
def physical_model(body: PhysicalModelRequest):
    Log.section("Physical Model Hook")
    symptoms_input = " ".join(body.symptoms)
    try:
        result = run_predictor(get_model_command("physical"), [symptoms_input])
    except HealthModelError:
        return JSONResponse(status_code=500, content={"error": "Failed to process physical model"})
    return ModelResult(message="Physical model processed", result=result)


@app.post("/mental-model/", response_model=ModelResult)
def mental_model(body: MentalModelRequest):
    Log.section("Mental Model Hook")
    symptoms_input = " ".join(body.symptoms)
    age = int(body.age) if float(body.age).is_integer() else body.age
    try:
        result = run_predictor(get_model_command("mental"), [symptoms_input, str(age), body.gender])
    except HealthModelError:
        return JSONResponse(status_code=500, content={"error": "Failed to process mental model"})
    return ModelResult(message="Mental model processed", result=result)
