import logging
from typing import Dict, List, Type

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exam_awards import schemas
from exam_awards.attempts import AttemptService
from exam_awards.config import AwardSettings
from exam_awards.crud import SqlExamStore
from exam_awards.database import get_engine, get_session_local, init_db
from exam_awards.errors import (
    AnswerNotFound,
    AttemptAlreadyCompleted,
    AttemptExpired,
    AttemptNotFound,
    ExamAwardsError,
    ExamNotFound,
    ExamNotPublished,
    InvalidAttemptState,
    InvalidGrade,
    QuestionNotFound,
    StorageFailure,
)


# -------------------------------------------------
# Logger
# -------------------------------------------------
logger = logging.getLogger("exam_awards")
if not logger.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))
    logger.addHandler(_h)
logger.setLevel(logging.INFO)


# -------------------------------------------------
# FastAPI app / CORS
# -------------------------------------------------
app = FastAPI(title="exam-awards")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_ERROR: Dict[Type[ExamAwardsError], int] = {
    ExamNotFound: 404,
    AttemptNotFound: 404,
    AnswerNotFound: 404,
    QuestionNotFound: 404,
    ExamNotPublished: 403,
    AttemptAlreadyCompleted: 403,
    AttemptExpired: 403,
    InvalidAttemptState: 400,
    InvalidGrade: 400,
    StorageFailure: 503,
}


@app.exception_handler(ExamAwardsError)
async def handle_engine_error(request: Request, exc: ExamAwardsError):
    status = _STATUS_BY_ERROR.get(type(exc), 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def build_service(settings: AwardSettings) -> AttemptService:
    engine = get_engine(settings.database_url)
    init_db(engine)
    store = SqlExamStore(get_session_local(engine=engine))
    return AttemptService(store, settings)


@app.on_event("startup")
def on_startup():
    if getattr(app.state, "service", None) is None:
        settings = AwardSettings.from_env()
        app.state.service = build_service(settings)
        logger.info(f"[startup] prize table {settings.prize_amounts}, award delay {settings.award_delay}")


def get_service(request: Request) -> AttemptService:
    return request.app.state.service


# -------------------------------------------------
# API routes
# -------------------------------------------------
@app.post("/api/exams/{exam_id}/start", response_model=schemas.Attempt)
def start_exam(exam_id: str, x_student_id: str = Header(...), service: AttemptService = Depends(get_service)):
    return service.start_exam(exam_id, x_student_id)


@app.post("/api/attempts/{attempt_id}/answers", response_model=schemas.Answer)
def submit_answer(
    attempt_id: str,
    payload: schemas.SubmitAnswerPayload,
    x_student_id: str = Header(...),
    service: AttemptService = Depends(get_service),
):
    """Save (or overwrite) the answer to one question of an in-progress attempt."""
    return service.submit_answer(attempt_id, x_student_id, payload.question_id, payload.option_id, payload.free_text)


@app.post("/api/attempts/{attempt_id}/submit", response_model=schemas.Attempt)
def submit_exam(attempt_id: str, x_student_id: str = Header(...), service: AttemptService = Depends(get_service)):
    """Grade the attempt, mark it COMPLETED and run the prize check for its exam."""
    return service.submit_exam(attempt_id, x_student_id)


@app.get("/api/attempts/{attempt_id}/result", response_model=schemas.AttemptResult)
def get_result(attempt_id: str, x_student_id: str = Header(...), service: AttemptService = Depends(get_service)):
    return service.get_result(attempt_id, x_student_id)


@app.get("/api/attempts", response_model=List[schemas.StudentAttempt])
def list_my_attempts(x_student_id: str = Header(...), service: AttemptService = Depends(get_service)):
    return service.list_attempts(x_student_id)


@app.patch("/api/attempts/{attempt_id}/answers/{answer_id}/grade", response_model=schemas.ManualGradeResult)
def grade_answer(
    attempt_id: str,
    answer_id: str,
    payload: schemas.GradeAnswerPayload,
    service: AttemptService = Depends(get_service),
):
    return service.grade_answer(attempt_id, answer_id, payload.points)


@app.post("/api/exams/{exam_id}/prizes", response_model=schemas.ExamAwardResult)
def award_exam(exam_id: str, service: AttemptService = Depends(get_service)):
    return service.coordinator.award_exam(exam_id)


@app.post("/api/students/{student_id}/prizes/check", response_model=schemas.StudentPrizeCheck)
def check_student_prizes(student_id: str, service: AttemptService = Depends(get_service)):
    """Login sweep: pay any prize that became due since the student's last visit."""
    return service.check_prizes_for_student(student_id)


@app.post("/api/attempts/expire", response_model=schemas.ExpireResult)
def expire_attempts(service: AttemptService = Depends(get_service)):
    return schemas.ExpireResult(timed_out=service.expire_stale_attempts())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("exam_awards.main:app", host="0.0.0.0", port=8000)
