from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path

from dotenv import load_dotenv

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from generation_utils import CompletionClient, CompletionError, ResponseValidationError, normalize_service
from logging_config import configure_logging
from pipeline import PipelineSession, Stage, StageBusyError, StageInput, WriteMode
from prompt_builders import CharacterInput, CompositionInput, InteriorInput, PipelineError, PreconditionError
from prompts_lib import REGION_CITY_MAP, STAGE_CATALOGUE, derive_default_city

load_dotenv()

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent
ENV_PATH = BASE_DIR / ".env"
TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

SERVICE_KEY_NAMES = {
    "gemini": ("GEMINI_API_KEY", "GOOGLE_AI_STUDIO_API", "API_KEY"),
    "openai": ("OPENAI_API_KEY",),
    "grok": ("GROK_API_KEY",),
}

STAGE_INPUTS = {
    Stage.CHARACTER: CharacterInput,
    Stage.INTERIOR: InteriorInput,
    Stage.COMPOSITE: CompositionInput,
}


def load_env_file() -> tuple[dict[str, str], bool]:
    if not ENV_PATH.exists():
        return {}, False
    values: dict[str, str] = {}
    for line in ENV_PATH.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        values[key.strip()] = value.strip()
    return values, True


def update_env_file(updates: dict[str, str]) -> None:
    existing_lines = []
    if ENV_PATH.exists():
        existing_lines = ENV_PATH.read_text().splitlines()

    remaining = {key: value for key, value in updates.items()}
    output_lines = []
    for line in existing_lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            output_lines.append(line)
            continue
        key, _ = stripped.split("=", 1)
        key = key.strip()
        if key in remaining:
            value = remaining.pop(key)
            if value:
                output_lines.append(f"{key}={value}")
            continue
        output_lines.append(line)

    for key, value in remaining.items():
        if value:
            output_lines.append(f"{key}={value}")

    if output_lines:
        ENV_PATH.write_text("\n".join(output_lines).strip() + "\n")


def _clean_env_value(value: str) -> str:
    cleaned = value.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {"'", '"'}:
        return cleaned[1:-1]
    return cleaned


def _env_values() -> dict[str, str]:
    file_values, _ = load_env_file()
    return {**os.environ, **file_values}


def _resolve_service_key(service: str, env_values: dict[str, str]) -> str:
    for name in SERVICE_KEY_NAMES[normalize_service(service)]:
        value = _clean_env_value(env_values.get(name, ""))
        if value:
            return value
    return ""


def _default_service() -> str:
    return normalize_service(os.environ.get("PROMPT_SUITE_SERVICE", "gemini"))


def _check_credentials() -> bool:
    service = _default_service()
    if _resolve_service_key(service, _env_values()):
        logger.info("Completion backend: %s", service)
        return True
    logger.error(
        "No API key configured for %s. Set %s in the environment or .env; generation requests will be refused.",
        service,
        " or ".join(SERVICE_KEY_NAMES[service]),
    )
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.credentials_ok = _check_credentials()
    yield


app = FastAPI(title="Prompt Suite", lifespan=lifespan)
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
app.state.session = PipelineSession()


def get_session(request: Request) -> PipelineSession:
    return request.app.state.session


def get_completer(service: str = Form("")) -> CompletionClient:
    selected_service = normalize_service(service or _default_service())
    api_key = _resolve_service_key(selected_service, _env_values())
    if not api_key:
        raise HTTPException(status_code=400, detail="Missing API key for selected service.")
    return CompletionClient(selected_service, api_key, model=os.environ.get("PROMPT_SUITE_MODEL") or None)


def _is_true(value: str) -> bool:
    return (value or "").strip().lower() in {"true", "1", "on", "yes"}


async def _run_generation(
    session: PipelineSession,
    stage: Stage,
    stage_input: StageInput,
    completer: CompletionClient,
    mode: WriteMode = WriteMode.APPEND,
    navigate: bool = False,
) -> JSONResponse:
    try:
        outcome = await run_in_threadpool(session.generate, stage, stage_input, mode, navigate, completer)
    except PreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StageBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (CompletionError, ResponseValidationError, PipelineError) as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    store = session.histories[stage]
    return JSONResponse(
        {
            "stage": int(stage),
            "entry": {"generation": len(store), **outcome.entry.to_dict()},
            "positive_prompt": outcome.entry.positive_prompt,
            "navigate": outcome.navigate,
            "active_stage": int(session.coordinator.active_stage),
        }
    )


def _render_stage(request: Request, session: PipelineSession) -> HTMLResponse:
    stage = session.coordinator.active_stage
    catalogue = STAGE_CATALOGUE[int(stage)]
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "stage": int(stage),
            "stages": {number: entry["title"] for number, entry in STAGE_CATALOGUE.items()},
            "rules": catalogue["rules"],
            "options": catalogue["options"],
            "region_city_map": REGION_CITY_MAP,
            "defaults": asdict(STAGE_INPUTS[stage]()),
            "character": session.coordinator.character,
            "interior": session.coordinator.interior,
            "history": session.histories[stage].numbered(),
            "busy": session.is_busy(stage),
            "credentials_ok": request.app.state.credentials_ok,
        },
    )


@app.get("/", response_class=HTMLResponse)
async def index(request: Request, session: PipelineSession = Depends(get_session)) -> HTMLResponse:
    return _render_stage(request, session)


@app.get("/stage/{stage_number}")
async def select_stage(stage_number: int, session: PipelineSession = Depends(get_session)) -> RedirectResponse:
    if stage_number not in STAGE_CATALOGUE:
        raise HTTPException(status_code=404, detail="Unknown stage.")
    session.coordinator.select_stage(Stage(stage_number))
    return RedirectResponse(url="/", status_code=303)


@app.get("/options/cities")
async def cities_for_region(region: str) -> JSONResponse:
    if region not in REGION_CITY_MAP:
        raise HTTPException(status_code=404, detail="Unknown region.")
    return JSONResponse({"cities": REGION_CITY_MAP[region], "default": derive_default_city(region)})


@app.get("/state")
async def pipeline_state(session: PipelineSession = Depends(get_session)) -> JSONResponse:
    return JSONResponse(session.state())


@app.post("/settings")
async def update_settings(request: Request) -> JSONResponse:
    form = await request.form()
    service = normalize_service(str(form.get("service") or "gemini"))
    api_key = str(form.get("api_key") or "").strip()

    updates = {SERVICE_KEY_NAMES[service][0]: api_key}
    update_env_file(updates)
    for key, value in updates.items():
        if value:
            os.environ[key] = value
        else:
            os.environ.pop(key, None)
    request.app.state.credentials_ok = _check_credentials()
    logger.info("Stored API key for %s", service)
    return JSONResponse({"status": "ok"})


@app.post("/stage1/generate")
async def generate_character(
    region: str = Form(CharacterInput.region),
    city: str = Form(""),
    target_date: str = Form(CharacterInput.target_date),
    age: str = Form(CharacterInput.age),
    gender: str = Form(CharacterInput.gender),
    job: str = Form(CharacterInput.job),
    ethnicity: str = Form(CharacterInput.ethnicity),
    casting_mode: str = Form(CharacterInput.casting_mode),
    diversity_mode: str = Form(CharacterInput.diversity_mode),
    aspect_ratio: str = Form(CharacterInput.aspect_ratio),
    details: str = Form(CharacterInput.details),
    navigate: str = Form("false"),
    session: PipelineSession = Depends(get_session),
    completer: CompletionClient = Depends(get_completer),
) -> JSONResponse:
    form = CharacterInput(
        region=region,
        city=city.strip() or derive_default_city(region),
        target_date=target_date,
        age=age,
        gender=gender,
        job=job,
        ethnicity=ethnicity,
        casting_mode=casting_mode,
        diversity_mode=diversity_mode.strip().upper() or CharacterInput.diversity_mode,
        aspect_ratio=aspect_ratio,
        details=details,
    )
    return await _run_generation(session, Stage.CHARACTER, form, completer, navigate=_is_true(navigate))


@app.post("/stage2/generate")
async def generate_interior(
    room_type: str = Form(InteriorInput.room_type),
    style: str = Form(InteriorInput.style),
    lighting: str = Form(InteriorInput.lighting),
    colors: str = Form(InteriorInput.colors),
    details: str = Form(InteriorInput.details),
    mode: str = Form(WriteMode.RESET.value),
    navigate: str = Form("false"),
    session: PipelineSession = Depends(get_session),
    completer: CompletionClient = Depends(get_completer),
) -> JSONResponse:
    try:
        write_mode = WriteMode((mode or "").strip().lower())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Mode must be 'reset' or 'append'.") from exc

    form = InteriorInput(room_type=room_type, style=style, lighting=lighting, colors=colors, details=details)
    return await _run_generation(
        session, Stage.INTERIOR, form, completer, mode=write_mode, navigate=_is_true(navigate)
    )


@app.post("/stage3/generate")
async def generate_composite(
    shot_type: str = Form(CompositionInput.shot_type),
    lighting_balance: str = Form(CompositionInput.lighting_balance),
    camera_position: str = Form(CompositionInput.camera_position),
    interaction: str = Form(CompositionInput.interaction),
    directives: str = Form(CompositionInput.directives),
    session: PipelineSession = Depends(get_session),
    completer: CompletionClient = Depends(get_completer),
) -> JSONResponse:
    form = CompositionInput(
        shot_type=shot_type,
        lighting_balance=lighting_balance,
        camera_position=camera_position,
        interaction=interaction,
        directives=directives,
    )
    return await _run_generation(session, Stage.COMPOSITE, form, completer)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=os.environ.get("HOST", "127.0.0.1"), port=int(os.environ.get("PORT", "8000")))
