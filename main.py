import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthService
from config import Settings, get_settings
from database import Database
from errors import AuthenticationFailed, FinanceError, ValidationFailed
from models import TransactionType, User
from periods import Period, resolve_period
from repositories import UserRepository
from schemas import (
    AllowedOriginsIn,
    AllowedOriginsOut,
    AuthOut,
    BudgetIn,
    BudgetOut,
    BudgetProgressOut,
    BudgetUpdateIn,
    CategoryIn,
    CategoryOut,
    CategoryUpdateIn,
    LoginIn,
    RegisterIn,
    TransactionIn,
    TransactionOut,
    TransactionUpdateIn,
    UserOut,
    UserUpdateIn,
)
from services import (
    CategoryService,
    DashboardService,
    TransactionFilters,
    TransactionService,
    UserService,
    build_budget_service,
)


logger = logging.getLogger(__name__)


def get_db(request: Request):
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_auth_service(
    db: Session = Depends(get_db), settings: Settings = Depends(get_app_settings)
) -> AuthService:
    return AuthService(UserRepository(db), settings)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> User:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationFailed("Authentication required")
    user_id = AuthService(UserRepository(db), settings).verify_token(token.strip())
    if user_id is None:
        raise AuthenticationFailed("Invalid or expired token")
    user = UserRepository(db).find_by_id(user_id)
    if user is None:
        raise AuthenticationFailed("User no longer exists")
    return user


def period_from_request(request: Request) -> Period:
    try:
        return resolve_period(
            request.query_params.get("period"),
            request.query_params.get("start"),
            request.query_params.get("end"),
        )
    except ValueError as exc:
        raise ValidationFailed(str(exc)) from exc


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(FinanceError)
    async def finance_error_handler(request: Request, exc: FinanceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "loc": list(err.get("loc", ())),
                "msg": err.get("msg"),
                "type": err.get("type"),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"message": "Validation error", "details": details},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception(f"database_error: path={request.url.path}")
        return JSONResponse(
            status_code=500, content={"message": "An unexpected error occurred"}
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"unhandled_error: path={request.url.path}")
        return JSONResponse(
            status_code=500, content={"message": "An unexpected error occurred"}
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title="Personal Finance Tracker")
    app.state.settings = settings
    app.state.db = Database(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)

    @app.on_event("startup")
    def startup_event():
        app.state.db.ping()
        logger.info("startup: database reachable")

    @app.on_event("shutdown")
    def shutdown_event():
        app.state.db.dispose()
        logger.info("shutdown: database pool closed")

    @app.get("/health")
    def health(request: Request):
        try:
            request.app.state.db.ping()
        except SQLAlchemyError:
            logger.exception("health: database unreachable")
            return JSONResponse(
                status_code=503, content={"status": "degraded", "database": "down"}
            )
        return {"status": "ok", "database": "up"}

    # -- auth --------------------------------------------------------------

    @app.post("/api/auth/register", response_model=AuthOut, status_code=201)
    def register(data: RegisterIn, auth: AuthService = Depends(get_auth_service)):
        user, token = auth.register(data)
        return {"user": user, "access_token": token}

    @app.post("/api/auth/login", response_model=AuthOut)
    def login(data: LoginIn, auth: AuthService = Depends(get_auth_service)):
        user = auth.validate_user(data.email, data.password)
        if user is None:
            logger.info("login_failed")
            raise AuthenticationFailed("Invalid email or password")
        return {"user": user, "access_token": auth.generate_token(user.id)}

    @app.get("/api/auth/me", response_model=UserOut)
    def me(user: User = Depends(get_current_user)):
        return user

    # -- users -------------------------------------------------------------

    @app.get("/api/users/{user_id}", response_model=UserOut)
    def get_user(
        user_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        return UserService(db, user).get(user_id)

    @app.put("/api/users/{user_id}", response_model=UserOut)
    def update_user(
        user_id: str,
        data: UserUpdateIn,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        return UserService(db, user).update(user_id, data)

    @app.get(
        "/api/users/{user_id}/allowed-origins", response_model=AllowedOriginsOut
    )
    def get_allowed_origins(
        user_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        found = UserService(db, user).get(user_id)
        return {"allowed_origins": found.allowed_origins or []}

    @app.put("/api/users/{user_id}/allowed-origins", response_model=UserOut)
    def update_allowed_origins(
        user_id: str,
        data: AllowedOriginsIn,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        origins = [str(origin) for origin in data.allowed_origins]
        return UserService(db, user).set_allowed_origins(user_id, origins)

    @app.delete("/api/users/{user_id}", status_code=204)
    def delete_user(
        user_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        UserService(db, user).delete(user_id)
        return Response(status_code=204)

    # -- categories --------------------------------------------------------

    @app.get("/api/categories", response_model=list[CategoryOut])
    def list_categories(
        type: Optional[TransactionType] = None, db: Session = Depends(get_db)
    ):
        return CategoryService(db).list(type)

    @app.get("/api/categories/{category_id}", response_model=CategoryOut)
    def get_category(category_id: str, db: Session = Depends(get_db)):
        return CategoryService(db).get(category_id)

    @app.post("/api/categories", response_model=CategoryOut, status_code=201)
    def create_category(
        data: CategoryIn,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        return CategoryService(db, user).create(data)

    @app.put("/api/categories/{category_id}", response_model=CategoryOut)
    def update_category(
        category_id: str,
        data: CategoryUpdateIn,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        return CategoryService(db, user).update(category_id, data)

    @app.delete("/api/categories/{category_id}", status_code=204)
    def delete_category(
        category_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        CategoryService(db, user).delete(category_id)
        return Response(status_code=204)

    # -- transactions ------------------------------------------------------

    @app.get("/api/transactions", response_model=list[TransactionOut])
    def list_transactions(
        type: Optional[TransactionType] = None,
        category_id: Optional[str] = None,
        start_date: Optional[date] = Query(None),
        end_date: Optional[date] = Query(None),
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        filters = TransactionFilters(
            type=type, category_id=category_id, start=start_date, end=end_date
        )
        return TransactionService(db, user).list(filters)

    @app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
    def get_transaction(
        transaction_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        return TransactionService(db, user).get(transaction_id)

    @app.post("/api/transactions", response_model=TransactionOut, status_code=201)
    def create_transaction(
        data: TransactionIn,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        return TransactionService(db, user).create(data)

    @app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
    def update_transaction(
        transaction_id: str,
        data: TransactionUpdateIn,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        return TransactionService(db, user).update(transaction_id, data)

    @app.delete("/api/transactions/{transaction_id}", status_code=204)
    def delete_transaction(
        transaction_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        TransactionService(db, user).delete(transaction_id)
        return Response(status_code=204)

    # -- budgets -----------------------------------------------------------

    @app.get("/api/budgets", response_model=list[BudgetOut])
    def list_budgets(
        active: bool = False,
        category_id: Optional[str] = None,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
        settings: Settings = Depends(get_app_settings),
    ):
        service = build_budget_service(db, user, settings)
        return service.list(active=active, category_id=category_id)

    @app.get("/api/budgets/progress/all", response_model=list[BudgetProgressOut])
    def all_budget_progress(
        as_of: Optional[date] = Query(None),
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
        settings: Settings = Depends(get_app_settings),
    ):
        service = build_budget_service(db, user, settings)
        return [p.to_dict() for p in service.progress_all(as_of)]

    @app.get("/api/budgets/{budget_id}", response_model=BudgetOut)
    def get_budget(
        budget_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
        settings: Settings = Depends(get_app_settings),
    ):
        return build_budget_service(db, user, settings).get(budget_id)

    @app.get("/api/budgets/{budget_id}/progress", response_model=BudgetProgressOut)
    def budget_progress(
        budget_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
        settings: Settings = Depends(get_app_settings),
    ):
        return build_budget_service(db, user, settings).progress(budget_id).to_dict()

    @app.post("/api/budgets", response_model=BudgetOut, status_code=201)
    def create_budget(
        data: BudgetIn,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
        settings: Settings = Depends(get_app_settings),
    ):
        return build_budget_service(db, user, settings).create(data)

    @app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
    def update_budget(
        budget_id: str,
        data: BudgetUpdateIn,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
        settings: Settings = Depends(get_app_settings),
    ):
        return build_budget_service(db, user, settings).update(budget_id, data)

    @app.delete("/api/budgets/{budget_id}", status_code=204)
    def delete_budget(
        budget_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
        settings: Settings = Depends(get_app_settings),
    ):
        build_budget_service(db, user, settings).delete(budget_id)
        return Response(status_code=204)

    # -- dashboard ---------------------------------------------------------

    @app.get("/api/dashboard/summary")
    def dashboard_summary(
        request: Request,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        return DashboardService(db, user).summary(period_from_request(request))

    @app.get("/api/dashboard/spending-by-category")
    def dashboard_spending_by_category(
        request: Request,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        period = period_from_request(request)
        return DashboardService(db, user).spending_by_category(period)

    @app.get("/api/dashboard/monthly-trends")
    def dashboard_monthly_trends(
        months: int = Query(6, ge=1, le=36),
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        return DashboardService(db, user).monthly_trends(months)

    return app


def main():
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
