from dataclasses import asdict
from functools import lru_cache
import logging
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from smartcgpa.config.settings import settings
from smartcgpa.core.errors import GradingError, NotFoundError, ValidationError
from smartcgpa.core.gpa import aggregate_cumulative, aggregate_semester, ensure_not_empty
from smartcgpa.core.grading import GradeBucket, GradingConfig
from smartcgpa.core.models import Subject
from smartcgpa.core.planner import (
    find_critical_external_marks,
    find_minimal_external_marks_for_target,
    gpa_curve,
    greedy_plan,
    marginal_gains,
)
from smartcgpa.services.export_service import build_export, render_text_report
from smartcgpa.services.storage import Storage, StorageError

logger = logging.getLogger(__name__)

app = FastAPI(title="SmartCGPA API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class BucketPayload(BaseModel):
    minimum_total: float
    grade_point: float
    label: str = ""


class ConfigPayload(BaseModel):
    max_internal: Optional[float] = None
    max_external: Optional[float] = None
    buckets: Optional[List[BucketPayload]] = None
    rounding_digits: Optional[int] = None


class SubjectPayload(BaseModel):
    code: str
    name: str
    internal_marks: float
    external_marks: float = 0
    credits: int = Field(ge=1)

    def to_subject(self) -> Subject:
        return Subject(
            identifier=self.code.strip(),
            display_name=self.name.strip(),
            internal_marks=self.internal_marks,
            external_marks=self.external_marks,
            credits=self.credits,
        )


class SgpaRequest(BaseModel):
    subjects: Optional[List[SubjectPayload]] = None
    config: Optional[ConfigPayload] = None


class SubjectPlanRequest(SgpaRequest):
    target_code: str
    target_gpa: float


class GlobalPlanRequest(SgpaRequest):
    target_gpa: float
    max_iterations: Optional[int] = Field(default=None, ge=1)


class CriticalRequest(BaseModel):
    internal_marks: float
    config: Optional[ConfigPayload] = None


class CurveRequest(SgpaRequest):
    code: str
    step: float = Field(default=1, gt=0)


class SemesterPayload(BaseModel):
    name: str
    make_active: bool = False


class SubjectCreatePayload(SubjectPayload):
    semester_id: Optional[int] = None


class BulkSubjectsPayload(BaseModel):
    semester_id: Optional[int] = None
    subjects: List[SubjectPayload] = Field(min_length=1)


class ExternalMarksPayload(BaseModel):
    external_marks: float


class RecalculatePayload(BaseModel):
    semester_id: Optional[int] = None


@lru_cache(maxsize=1)
def get_storage() -> Storage:
    return Storage(settings.db_path)


def _required_uid(x_user_id: Optional[str]) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing x-user-id header")
    return x_user_id


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        logger.warning(f"Rejected input: {exc}")
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _config(payload: Optional[ConfigPayload]) -> GradingConfig:
    base = settings.grading_config()
    if payload is None:
        return base
    buckets = base.buckets
    if payload.buckets is not None:
        buckets = tuple(GradeBucket(**bucket.model_dump()) for bucket in payload.buckets)
    return GradingConfig(
        max_internal=base.max_internal if payload.max_internal is None else payload.max_internal,
        max_external=base.max_external if payload.max_external is None else payload.max_external,
        buckets=buckets,
        rounding_digits=base.rounding_digits if payload.rounding_digits is None else payload.rounding_digits,
    )


def _active_semester_id(store: Storage, uid: str) -> int:
    active = store.get_active_semester(uid)
    if active is None:
        raise NotFoundError("No active semester")
    return int(active["id"])


def _subjects(payload: SgpaRequest, store: Storage, uid: Optional[str]) -> List[Subject]:
    if payload.subjects is not None:
        return [subject.to_subject() for subject in payload.subjects]
    uid = _required_uid(uid)
    subjects = store.load_subjects(uid, _active_semester_id(store, uid))
    ensure_not_empty(subjects, "subjects")
    return subjects


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/calculate/sgpa")
def calculate_sgpa(
    payload: SgpaRequest,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict:
    try:
        config = _config(payload.config)
        return asdict(aggregate_semester(_subjects(payload, store, x_user_id), config))
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.get("/calculate/cgpa")
def calculate_cgpa(x_user_id: Optional[str] = Header(default=None), store: Storage = Depends(get_storage)) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        semesters = store.load_semesters(uid)
        ensure_not_empty(semesters, "semesters")
        return asdict(aggregate_cumulative(semesters, settings.grading_config()))
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.post("/planner/subject")
def plan_subject(
    payload: SubjectPlanRequest,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict:
    try:
        config = _config(payload.config)
        subjects = _subjects(payload, store, x_user_id)
        plan = find_minimal_external_marks_for_target(subjects, payload.target_code, payload.target_gpa, config)
        return asdict(plan)
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.post("/planner/global")
def plan_global(
    payload: GlobalPlanRequest,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict:
    try:
        config = _config(payload.config)
        subjects = _subjects(payload, store, x_user_id)
        max_iterations = payload.max_iterations or settings.planner_max_iterations
        return asdict(greedy_plan(subjects, payload.target_gpa, config, max_iterations=max_iterations))
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.post("/planner/critical")
def plan_critical(payload: CriticalRequest) -> List[Dict]:
    try:
        config = _config(payload.config)
        if not 0 <= payload.internal_marks <= config.max_internal:
            raise ValidationError([f"internal marks must be between 0 and {config.max_internal}"])
        return [asdict(item) for item in find_critical_external_marks(payload.internal_marks, config)]
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.post("/planner/marginal-gains")
def plan_marginal_gains(
    payload: SgpaRequest,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> List[Dict]:
    try:
        config = _config(payload.config)
        return [asdict(item) for item in marginal_gains(_subjects(payload, store, x_user_id), config)]
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.post("/planner/curve")
def plan_curve(
    payload: CurveRequest,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> List[Dict]:
    try:
        config = _config(payload.config)
        subjects = _subjects(payload, store, x_user_id)
        return [asdict(point) for point in gpa_curve(subjects, payload.code, config, step=payload.step)]
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.get("/semesters")
def list_semesters(x_user_id: Optional[str] = Header(default=None), store: Storage = Depends(get_storage)) -> List[Dict]:
    uid = _required_uid(x_user_id)
    return store.list_semesters(uid)


@app.get("/semesters/active")
def get_active_semester(
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict:
    uid = _required_uid(x_user_id)
    semester = store.get_active_semester(uid)
    if semester is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active semester")
    return semester


@app.post("/semesters", status_code=status.HTTP_201_CREATED)
def create_semester(
    payload: SemesterPayload,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict[str, int]:
    uid = _required_uid(x_user_id)
    try:
        return {"id": store.create_semester(uid, payload.name, make_active=payload.make_active)}
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@app.put("/semesters/{semester_id}/activate")
def activate_semester(
    semester_id: int,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict[str, str]:
    uid = _required_uid(x_user_id)
    try:
        store.activate_semester(uid, semester_id)
        return {"status": "activated"}
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.delete("/semesters/{semester_id}")
def delete_semester(
    semester_id: int,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict[str, str]:
    uid = _required_uid(x_user_id)
    try:
        store.delete_semester(uid, semester_id)
        return {"status": "deleted"}
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.get("/subjects")
def list_subjects(x_user_id: Optional[str] = Header(default=None), store: Storage = Depends(get_storage)) -> List[Dict]:
    uid = _required_uid(x_user_id)
    active = store.get_active_semester(uid)
    if active is None:
        return []
    return store.list_subjects(uid, int(active["id"]))


@app.post("/subjects", status_code=status.HTTP_201_CREATED)
def create_subject(
    payload: SubjectCreatePayload,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        semester_id = payload.semester_id or _active_semester_id(store, uid)
        subject_id = store.create_subject(uid, semester_id, payload.to_subject(), settings.grading_config())
        return store.get_subject(uid, subject_id)
    except GradingError as exc:
        raise _http_error(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@app.post("/subjects/bulk", status_code=status.HTTP_201_CREATED)
def create_subjects_bulk(
    payload: BulkSubjectsPayload,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict[str, List[int]]:
    uid = _required_uid(x_user_id)
    try:
        semester_id = payload.semester_id
        if semester_id is None:
            active = store.get_active_semester(uid)
            semester_id = int(active["id"]) if active else store.create_semester(uid, "Current Semester")
        subjects = [item.to_subject() for item in payload.subjects]
        return {"ids": store.create_subjects_bulk(uid, semester_id, subjects, settings.grading_config())}
    except GradingError as exc:
        raise _http_error(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@app.post("/subjects/recalculate")
def recalculate_subjects(
    payload: RecalculatePayload,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict[str, int]:
    uid = _required_uid(x_user_id)
    try:
        updated = store.recalculate(uid, settings.grading_config(), semester_id=payload.semester_id)
        return {"updated_count": updated}
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.get("/subjects/{subject_id}")
def get_subject(
    subject_id: int,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return store.get_subject(uid, subject_id)
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.put("/subjects/{subject_id}")
def update_subject(
    subject_id: int,
    payload: SubjectPayload,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return store.update_subject(uid, subject_id, payload.to_subject(), settings.grading_config())
    except GradingError as exc:
        raise _http_error(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@app.patch("/subjects/{subject_id}/see")
def update_external_marks(
    subject_id: int,
    payload: ExternalMarksPayload,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return store.update_external_marks(uid, subject_id, payload.external_marks, settings.grading_config())
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.delete("/subjects/{subject_id}")
def delete_subject(
    subject_id: int,
    x_user_id: Optional[str] = Header(default=None),
    store: Storage = Depends(get_storage),
) -> Dict[str, str]:
    uid = _required_uid(x_user_id)
    try:
        store.delete_subject(uid, subject_id)
        return {"status": "deleted"}
    except GradingError as exc:
        raise _http_error(exc) from exc


@app.get("/export/json")
def export_json(x_user_id: Optional[str] = Header(default=None), store: Storage = Depends(get_storage)) -> Dict:
    uid = _required_uid(x_user_id)
    return build_export(store.load_semesters(uid), settings.grading_config())


@app.get("/export/text", response_class=PlainTextResponse)
def export_text(x_user_id: Optional[str] = Header(default=None), store: Storage = Depends(get_storage)) -> str:
    uid = _required_uid(x_user_id)
    return render_text_report(store.load_semesters(uid), settings.grading_config())
