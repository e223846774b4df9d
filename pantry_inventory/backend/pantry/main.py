import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from pantry import crud, reports
from pantry.backend import Backend, BackendError, Session
from pantry.celery_app import celery_app
from pantry.config import ACCESS_TOKEN_EXPIRE_MINUTES
from pantry.database import init_db, get_db
from pantry.errors import AuthenticationFailure, PantryError
from pantry.gate import View, decide
from pantry.notifications import INVENTORY_CHANNEL, connect as connect_redis
from pantry.schemas import (
    DashboardStats,
    GateDecisionSchema,
    ItemCreate,
    ItemSchema,
    MonthlyReport,
    SignUpRequest,
    Token,
    UserListing,
    UserSchema,
    WithdrawalCreate,
    WithdrawalReceipt,
    WithdrawalSchema,
)
from pantry.session import INVALID_CREDENTIALS, NOT_APPROVED, SessionManager
from pantry.tasks import generate_monthly_report

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)

NOT_AUTHENTICATED = "Não autenticado."

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield

app = FastAPI(title="Pantry Inventory", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(PantryError)
async def pantry_error_handler(request: Request, exc: PantryError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ============================================================================
# Dependencies
# ============================================================================

def get_backend(db: AsyncSession = Depends(get_db)) -> Backend:
    return Backend(db)

async def get_session_manager(
    token: Optional[str] = Depends(oauth2_scheme),
    backend: Backend = Depends(get_backend),
):
    if token:
        try:
            await backend.auth.set_session(token)
        except BackendError as e:
            logger.info(f"Ignoring bearer token: {e}")
    manager = SessionManager(backend)
    await manager.start()
    try:
        yield manager
    finally:
        manager.close()

def require_approved(manager: SessionManager = Depends(get_session_manager)) -> UserSchema:
    decision = decide(manager.user, manager.loading)
    if decision.view is View.WORKSPACE:
        return manager.user
    if manager.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NOT_AUTHENTICATED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=NOT_APPROVED)

def require_super_admin(user: UserSchema = Depends(require_approved)) -> UserSchema:
    if not user.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=crud.ADMIN_ONLY)
    return user

def _token(session: Session) -> Token:
    # login and refresh always hand out freshly issued tokens
    return Token(
        access_token=session.access_token,
        token_type=session.token_type,
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


# ============================================================================
# Session
# ============================================================================

@app.get("/")
async def read_root():
    return {"message": "Pantry Inventory System"}

@app.post("/signup")
async def signup(form_data: SignUpRequest, manager: SessionManager = Depends(get_session_manager)):
    error = await manager.sign_up(form_data.email, form_data.password, form_data.full_name)
    if error:
        raise HTTPException(status_code=400, detail=error)
    return {
        "message": "Conta criada. Aguarde a aprovação do administrador.",
        "email": form_data.email,
    }

@app.post("/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    manager: SessionManager = Depends(get_session_manager),
    backend: Backend = Depends(get_backend),
):
    error = await manager.sign_in(form_data.username, form_data.password)
    if error == INVALID_CREDENTIALS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if error == NOT_APPROVED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error)
    if error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)
    session = await backend.auth.get_session()
    if session is None:
        raise AuthenticationFailure(NOT_AUTHENTICATED)
    return _token(session)

@app.post("/logout")
async def logout(manager: SessionManager = Depends(get_session_manager)):
    await manager.sign_out()
    return {"message": "Sessão encerrada."}

@app.post("/refresh", response_model=Token)
async def refresh_token(
    current_user: UserSchema = Depends(require_approved),
    backend: Backend = Depends(get_backend),
):
    try:
        session = await backend.auth.refresh_session()
    except BackendError as e:
        logger.warning(f"Token refresh failed for {current_user.email}: {e}")
        raise AuthenticationFailure(NOT_AUTHENTICATED)
    return _token(session)

@app.get("/me", response_model=GateDecisionSchema)
async def read_me(manager: SessionManager = Depends(get_session_manager)):
    decision = decide(manager.user, manager.loading)
    return GateDecisionSchema(
        view=decision.view.value,
        tabs=[tab.value for tab in decision.tabs],
        user=manager.user,
    )


# ============================================================================
# Items and withdrawals
# ============================================================================

@app.get("/items", response_model=List[ItemSchema])
async def get_items(
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_approved),
):
    return await crud.list_items(backend)

@app.post("/items", response_model=ItemSchema)
async def create_new_item(
    item: ItemCreate,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_approved),
):
    return await crud.add_item(backend, current_user, item.name, item.quantity, item.unit, item.category)

@app.get("/items/{item_id}", response_model=ItemSchema)
async def read_item(
    item_id: str,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_approved),
):
    return await crud.get_item(backend, item_id)

@app.post("/items/{item_id}/request-removal", response_model=ItemSchema)
async def request_item_removal(
    item_id: str,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_approved),
):
    return await crud.request_removal(backend, current_user, item_id)

@app.post("/items/{item_id}/deny-removal", response_model=ItemSchema)
async def deny_item_removal(
    item_id: str,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_super_admin),
):
    return await crud.deny_removal(backend, current_user, item_id)

@app.delete("/items/{item_id}")
async def delete_existing_item(
    item_id: str,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_super_admin),
):
    await crud.delete_item(backend, current_user, item_id)
    return {"message": "Item removido."}

@app.post("/items/{item_id}/withdraw", response_model=WithdrawalReceipt)
async def withdraw_from_item(
    item_id: str,
    withdrawal: WithdrawalCreate,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_approved),
):
    return await crud.withdraw_item(backend, current_user, item_id, withdrawal.quantity)

@app.get("/withdrawals", response_model=List[WithdrawalSchema])
async def get_withdrawals(
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_approved),
):
    return await crud.list_withdrawals(backend, current_user)

@app.get("/stats", response_model=DashboardStats)
async def get_stats(
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_approved),
):
    return await crud.dashboard_stats(backend)


# ============================================================================
# User administration
# ============================================================================

@app.get("/users", response_model=UserListing)
async def get_users(
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_super_admin),
):
    return await crud.list_users(backend)

@app.post("/users/{user_id}/approve", response_model=UserListing)
async def approve_pending_user(
    user_id: str,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_super_admin),
):
    return await crud.approve_user(backend, current_user, user_id)

@app.post("/users/{user_id}/toggle-admin", response_model=UserListing)
async def toggle_user_admin(
    user_id: str,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_super_admin),
):
    return await crud.toggle_admin(backend, current_user, user_id)

@app.delete("/users/{user_id}", response_model=UserListing)
async def reject_pending_user(
    user_id: str,
    confirm: bool = False,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_super_admin),
):
    return await crud.reject_user(backend, current_user, user_id, confirm=confirm)


# ============================================================================
# Reports
# ============================================================================

@app.get("/reports/{year_month}", response_model=MonthlyReport)
async def get_monthly_report(
    year_month: str,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_super_admin),
):
    return await reports.monthly_report(backend, year_month)

@app.get("/reports/{year_month}/export")
async def export_monthly_report(
    year_month: str,
    backend: Backend = Depends(get_backend),
    current_user: UserSchema = Depends(require_super_admin),
):
    report = await reports.monthly_report(backend, year_month)
    return Response(
        content=reports.report_to_csv(report),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{reports.report_filename(year_month)}"'},
    )

@app.post("/reports/{year_month}/generate")
async def generate_report(
    year_month: str,
    current_user: UserSchema = Depends(require_super_admin),
):
    reports.parse_year_month(year_month)
    task = generate_monthly_report.delay(year_month)
    logger.info(f"Started generate_monthly_report task with ID: {task.id}")
    return {"task_id": task.id, "status": "Report generation started"}

@app.get("/report/{task_id}")
async def get_report(
    task_id: str, current_user: UserSchema = Depends(require_super_admin)
):
    task_result = celery_app.AsyncResult(task_id)
    state = getattr(task_result, "state", getattr(task_result, "status", None))
    logger.info(f"Checking report task {task_id}, state: {state}")
    if not task_result.ready():
        return {"status": "PENDING", "detail": "Task is still processing"}
    if task_result.failed():
        raise HTTPException(
            status_code=500,
            detail=f"Report generation failed: {task_result.get(propagate=False)}",
        )
    return {"status": "SUCCESS", "result": task_result.get()}


# ============================================================================
# Live stock updates
# ============================================================================

@app.websocket("/ws/inventory")
async def websocket_inventory(
    websocket: WebSocket, token: str, db: AsyncSession = Depends(get_db)
):
    backend = Backend(db)
    try:
        await backend.auth.set_session(token)
    except BackendError:
        await websocket.close(code=1008, reason="Invalid token")
        return

    async with SessionManager(backend) as manager:
        if decide(manager.user, manager.loading).view is not View.WORKSPACE:
            await websocket.close(code=1008, reason="Not authorized")
            return
        user = manager.user

    await websocket.accept()
    redis_client = None
    try:
        redis_client = await connect_redis()
        pubsub = redis_client.pubsub()
        await pubsub.subscribe(INVENTORY_CHANNEL)
    except RedisError as e:
        logger.error(f"WebSocket setup error: {e}")
        if redis_client is not None:
            await redis_client.aclose()
        await websocket.close(code=1011, reason="Internal error")
        return

    try:
        async for message in pubsub.listen():
            if message["type"] == "message":
                await websocket.send_json(
                    {"channel": message["channel"], "data": message["data"]}
                )
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {user.email}")
    finally:
        await pubsub.unsubscribe(INVENTORY_CHANNEL)
        await redis_client.aclose()
