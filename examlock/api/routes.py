# examlock/api/routes.py
import logging
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse

from ..core.config import config
from ..core.utils import DateTimeUtils
from ..models.schemas import (
    PublicTest, TestResult, CreateTestRequest, SignupRequest, LoginRequest,
    CreateSessionRequest, StartSessionRequest, SelectAnswerRequest,
    NavigateRequest, HostEventRequest
)
from ..services.auth_service import AuthService, get_auth_service
from ..services.result_service import ResultService, get_result_service
from ..services.session_service import SessionService, get_session_service
from ..services.test_service import TestService, get_test_service

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/")
async def home():
    """Home endpoint"""
    return {
        "service": config.API_TITLE,
        "version": config.API_VERSION,
        "status": "operational"
    }

@router.get("/api/departments")
async def list_departments():
    return {"departments": config.DEPARTMENTS, "general": config.GENERAL_DEPARTMENT}

# ==================== Identity ====================

@router.post("/api/auth/signup", status_code=201)
async def signup(payload: SignupRequest, auth_service: AuthService = Depends(get_auth_service)):
    user_id = auth_service.signup(
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        department=payload.department
    )
    return {"message": "User created successfully", "userId": user_id}

@router.post("/api/auth/login")
async def login(payload: LoginRequest, auth_service: AuthService = Depends(get_auth_service)):
    user = auth_service.login(payload.email, payload.password)
    return {"message": "Login successful", "user": user.to_document()}

# ==================== Test Catalog ====================

@router.get("/api/tests")
async def list_tests(department: str = Query(""), test_service: TestService = Depends(get_test_service)):
    """Tests visible to a department, General pool included"""
    tests = test_service.list_tests(department)
    return [PublicTest.from_test(t, include_questions=False).to_document() for t in tests]

@router.get("/api/tests/{test_id}")
async def get_test(test_id: str, test_service: TestService = Depends(get_test_service)):
    return PublicTest.from_test(test_service.get_test(test_id)).to_document()

# ==================== Attempts ====================

@router.post("/api/sessions", status_code=201)
async def create_session(payload: CreateSessionRequest,
                         session_service: SessionService = Depends(get_session_service)):
    session = session_service.create_session(payload.test_id, payload.user_id)
    return session.snapshot()

@router.get("/api/sessions/{session_id}")
async def get_session(session_id: str, session_service: SessionService = Depends(get_session_service)):
    return session_service.get_session(session_id).snapshot()

@router.post("/api/sessions/{session_id}/start")
async def start_session(session_id: str, payload: StartSessionRequest,
                        session_service: SessionService = Depends(get_session_service)):
    session = await session_service.start_session(session_id, fullscreen_granted=payload.fullscreen)
    return session.snapshot()

@router.post("/api/sessions/{session_id}/answer")
async def select_answer(session_id: str, payload: SelectAnswerRequest,
                        session_service: SessionService = Depends(get_session_service)):
    session = session_service.get_session(session_id)
    session.select_answer(payload.question_id, payload.option)
    return session.snapshot()

@router.post("/api/sessions/{session_id}/navigate")
async def navigate(session_id: str, payload: NavigateRequest,
                   session_service: SessionService = Depends(get_session_service)):
    session = session_service.get_session(session_id)
    session.navigate(payload.direction)
    return session.snapshot()

@router.post("/api/sessions/{session_id}/events")
async def host_event(session_id: str, payload: HostEventRequest,
                     session_service: SessionService = Depends(get_session_service)):
    """Visibility and focus changes reported by the browser"""
    session = await session_service.handle_event(session_id, payload.event)
    return session.snapshot()

@router.post("/api/sessions/{session_id}/submit")
async def submit_session(session_id: str, session_service: SessionService = Depends(get_session_service)):
    result = await session_service.submit_session(session_id)
    session = session_service.get_session(session_id)

    if result is None:
        return JSONResponse(
            status_code=202,
            content={"message": "Submission already in progress", "session": session.snapshot()}
        )

    return {
        "message": "Test submitted successfully",
        "result": result.to_document(),
        "session": session.snapshot()
    }

# ==================== Results ====================

@router.post("/api/results", status_code=201)
async def save_result(result: TestResult, result_service: ResultService = Depends(get_result_service)):
    result_id = result_service.save(result)
    return {"message": "Result saved successfully", "id": result_id}

@router.get("/api/results/user/{user_id}")
async def list_user_results(user_id: str, result_service: ResultService = Depends(get_result_service)):
    return [r.to_document() for r in result_service.list_by_user(user_id)]

@router.get("/api/results/{result_id}")
async def get_result(result_id: str, result_service: ResultService = Depends(get_result_service)):
    return result_service.get_result_details(result_id).to_document()

# ==================== Admin ====================

@router.get("/api/admin/tests")
async def list_all_tests(test_service: TestService = Depends(get_test_service)):
    grouped = test_service.list_all_tests()
    return {
        department: [t.to_document() for t in tests]
        for department, tests in grouped.items()
    }

@router.post("/api/admin/tests", status_code=201)
async def create_test(payload: CreateTestRequest, test_service: TestService = Depends(get_test_service)):
    test_id = test_service.create_test(
        title=payload.title,
        time_limit=payload.time_limit,
        department=payload.department,
        questions=[q.model_dump() for q in payload.questions],
        description=payload.description
    )
    return {"message": "Test created successfully", "testId": test_id}

@router.post("/api/admin/tests/import", status_code=201)
async def import_test(title: str = Form(...), time_limit: int = Form(..., alias="timeLimit"),
                      department: str = Form(...), file: UploadFile = File(...),
                      test_service: TestService = Depends(get_test_service)):
    """Create a test from an .xlsx/.xls/.csv upload"""
    content = await file.read()
    test_id = test_service.import_test(title, time_limit, department, file.filename or "", content)
    return {"message": "Test imported successfully", "testId": test_id}

@router.delete("/api/admin/tests/{test_id}")
async def delete_test(test_id: str, test_service: TestService = Depends(get_test_service)):
    test_service.delete_test(test_id)
    return {"message": "Test deleted successfully"}

@router.get("/api/admin/results")
async def list_all_results(result_service: ResultService = Depends(get_result_service)):
    return [r.to_document() for r in result_service.list_all()]

@router.delete("/api/admin/results/{result_id}")
async def delete_result(result_id: str, result_service: ResultService = Depends(get_result_service)):
    result_service.delete(result_id)
    return {"message": "Result deleted successfully"}

@router.delete("/api/cleanup")
async def cleanup_sessions(session_service: SessionService = Depends(get_session_service)):
    """Drop expired attempts"""
    removed = session_service.cleanup_expired_sessions()
    return {
        "message": "Cleanup completed successfully",
        "sessions_cleaned": removed,
        "active_sessions": len(session_service.sessions),
        "timestamp": DateTimeUtils.get_current_timestamp()
    }
