"""FastAPI server that exposes the player and administrator endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError as PayloadValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from quiz_league.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from quiz_league.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quiz_league.core.errors import Forbidden, NotFound, QuizLeagueError, ValidationError
from quiz_league.core.models import User
from quiz_league.core.quiz_manager import QuizManager
from quiz_league.core.services.identity import map_token, map_user
from quiz_league.core.services.quiz_repository import map_question_for_admin, map_quiz
from quiz_league.core.services.scoreboard import map_result
from quiz_league.core.services.session_manager import map_session
from quiz_league.server.schemas import (
    ImportPayload,
    LoginPayload,
    PasswordPayload,
    QuestionCreatePayload,
    QuestionUpdatePayload,
    QuizCreatePayload,
    QuizUpdatePayload,
    RegisterPayload,
    ResultSubmissionPayload,
)

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def _get_quiz_manager_dependency(quiz_manager: QuizManager):
    def dependency() -> QuizManager:
        return quiz_manager

    return dependency


def _bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str | None:
    return credentials.credentials if credentials is not None else None


def _describe_validation_errors(errors: list[Any]) -> str:
    if not errors:
        return ValidationError.default_message
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", ValidationError.default_message)
    return f"{location}: {message}" if location else message


def _register_error_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": message}``."""

    @app.exception_handler(QuizLeagueError)
    async def handle_quiz_error(request: Request, exc: QuizLeagueError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _describe_validation_errors(exc.errors())})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_api_app(quiz_manager: QuizManager) -> FastAPI:
    """Create a FastAPI application wired to the provided quiz manager."""
    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(quiz_manager.settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)
    quiz_manager_dep = _get_quiz_manager_dependency(quiz_manager)

    def current_user_id(
        token: str | None = Depends(_bearer_token),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> str:
        return manager.authenticate(token)

    def current_admin(
        token: str | None = Depends(_bearer_token),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> User:
        return manager.require_admin(token)

    @app.get("/health")
    def health(manager: QuizManager = Depends(quiz_manager_dep)) -> dict[str, object]:
        manager.check_store()
        return {"status": "ok"}

    # --- Accounts ---

    @app.post("/users/register", status_code=201)
    def register_user(
        payload: RegisterPayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        user = manager.register_user(payload.name, payload.phone, payload.email, payload.profile_url)
        return map_user(user)

    @app.post("/users/{user_id}/password")
    def set_password(
        user_id: str,
        payload: PasswordPayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return map_token(manager.set_password(user_id, payload.password))

    @app.post("/auth/login")
    def login(
        payload: LoginPayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return map_token(manager.login(payload.phone, payload.password))

    @app.get("/auth/me")
    def get_me(
        token: str | None = Depends(_bearer_token),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return map_user(manager.get_current_user(token))

    @app.get("/users")
    def list_users(
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        return [map_user(user) for user in manager.list_users()]

    @app.delete("/users/{user_id}")
    def delete_user(
        user_id: str,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        manager.delete_user(user_id)
        return {"message": "User deleted", "id": user_id}

    @app.put("/users/{user_id}/password")
    def reset_password(
        user_id: str,
        payload: PasswordPayload,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return map_user(manager.reset_password(user_id, payload.password))

    # --- Playing ---

    @app.get("/quiz/active")
    def list_active_quizzes(manager: QuizManager = Depends(quiz_manager_dep)) -> list[dict[str, object]]:
        quizzes = manager.list_active_quizzes()
        if not quizzes:
            raise NotFound("No active quizzes")
        now = manager.now()
        return [map_quiz(quiz, now, for_player=True) for quiz in quizzes]

    @app.get("/quiz/active/{quiz_id}")
    def get_active_quiz(
        quiz_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return map_quiz(manager.get_active_quiz(quiz_id), manager.now(), for_player=True)

    @app.post("/quiz/{quiz_id}/start")
    def start_quiz(
        quiz_id: str,
        token: str | None = Depends(_bearer_token),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return map_session(manager.start_quiz(token, quiz_id))

    @app.post("/results", status_code=201)
    def submit_result(
        body: dict[str, Any] = Body(...),
        user_id: str = Depends(current_user_id),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        # Ownership is decided before the rest of the body is looked at.
        claimed_user_id = body.get("userId", body.get("user_id"))
        if claimed_user_id != user_id:
            raise Forbidden("Cannot submit results for another user")
        try:
            payload = ResultSubmissionPayload.model_validate(body)
        except PayloadValidationError as exc:
            raise ValidationError(_describe_validation_errors(exc.errors())) from exc

        receipt = manager.submit_result(
            user_id,
            payload.user_id,
            payload.quiz_id,
            [answer.to_answer() for answer in payload.answers],
            declared_score=payload.score,
        )
        response = map_result(receipt.result, include_answers=True)
        if receipt.warning:
            response["warning"] = receipt.warning
        return response

    @app.get("/user/{user_id}/attempts/{quiz_id}")
    def get_attempt(
        user_id: str,
        quiz_id: str,
        token: str | None = Depends(_bearer_token),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        attempt = manager.get_attempt(token, user_id, quiz_id)
        return {
            "hasAttempted": attempt is not None,
            "attempt": map_result(attempt) if attempt is not None else None,
        }

    # --- Leaderboards ---

    @app.get("/results")
    def list_all_results(manager: QuizManager = Depends(quiz_manager_dep)) -> list[dict[str, object]]:
        return [map_result(result) for result in manager.list_results()]

    @app.get("/results/{quiz_id}")
    def list_quiz_results(
        quiz_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        return [map_result(result) for result in manager.list_results(quiz_id)]

    @app.delete("/results")
    def reset_all_results(
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        deleted = manager.reset_results()
        return {"message": "All leaderboards reset successfully", "deleted": deleted}

    @app.delete("/results/{quiz_id}")
    def reset_quiz_results(
        quiz_id: str,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        deleted = manager.reset_results(quiz_id)
        return {"message": "Quiz-specific leaderboard reset successfully", "deleted": deleted}

    # --- Quiz administration ---

    @app.get("/quizzes")
    def list_quizzes(
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        now = manager.now()
        return [map_quiz(quiz, now, for_player=False) for quiz in manager.list_quizzes()]

    @app.post("/quizzes", status_code=201)
    def create_quiz(
        payload: QuizCreatePayload,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        quiz = manager.create_quiz(payload.title, payload.description, payload.scheduled_at_utc())
        return map_quiz(quiz, manager.now(), for_player=False)

    @app.get("/quizzes/{quiz_id}")
    def get_quiz(
        quiz_id: str,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return map_quiz(manager.get_quiz(quiz_id), manager.now(), for_player=False)

    @app.put("/quizzes/{quiz_id}")
    def update_quiz(
        quiz_id: str,
        payload: QuizUpdatePayload,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        quiz = manager.update_quiz(quiz_id, **payload.to_changes())
        return map_quiz(quiz, manager.now(), for_player=False)

    @app.delete("/quizzes/{quiz_id}")
    def delete_quiz(
        quiz_id: str,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        manager.delete_quiz(quiz_id)
        return {"message": "Quiz deleted", "id": quiz_id}

    @app.post("/quizzes/{quiz_id}/questions/{question_id}")
    def attach_question(
        quiz_id: str,
        question_id: str,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        quiz = manager.attach_question(quiz_id, question_id)
        return map_quiz(quiz, manager.now(), for_player=False)

    @app.delete("/quizzes/{quiz_id}/questions/{question_id}")
    def detach_question(
        quiz_id: str,
        question_id: str,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        quiz = manager.detach_question(quiz_id, question_id)
        return map_quiz(quiz, manager.now(), for_player=False)

    @app.post("/quizzes/{quiz_id}/import", status_code=201)
    def import_questions(
        quiz_id: str,
        payload: ImportPayload,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        created = manager.import_questions(quiz_id, payload.text)
        return {
            "imported": len(created),
            "questions": [map_question_for_admin(question) for question in created],
        }

    # --- Question administration ---

    @app.get("/questions")
    def list_questions(
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        return [map_question_for_admin(question) for question in manager.list_questions()]

    @app.post("/questions", status_code=201)
    def create_question(
        payload: QuestionCreatePayload,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        question = manager.create_question(payload.to_draft(), payload.quiz_ids)
        return map_question_for_admin(question)

    @app.put("/questions/{question_id}")
    def update_question(
        question_id: str,
        payload: QuestionUpdatePayload,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return map_question_for_admin(manager.update_question(question_id, payload.to_changes()))

    @app.delete("/questions/{question_id}")
    def delete_question(
        question_id: str,
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        manager.delete_question(question_id)
        return {"message": "Question deleted", "id": question_id}

    # --- Session inspection ---

    @app.get("/sessions")
    def list_sessions(
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        return [map_session(session) for session in manager.list_sessions()]

    @app.get("/sessions/active")
    def list_active_sessions(
        _admin: User = Depends(current_admin),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        return [map_session(session) for session in manager.list_sessions(active_only=True)]

    return app


def start_api_server(
    quiz_manager: QuizManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Build the app and serve it with uvicorn until interrupted."""
    app = create_api_app(quiz_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)
    server.run()
