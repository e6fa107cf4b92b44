from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Form,
    Request,
    UploadFile,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from sqlalchemy.orm import Session
import structlog

import companies
import crud
import models
import schemas
from auth import get_current_caller, require_admin
from cv_registry import CVRegistry
from database import create_db_and_tables, get_db
from errors import (
    AlreadyRegistered,
    JobBoardError,
    NotFoundError,
    SelfDeletion,
    ValidationError,
    ValidationFailure,
)
from files import FileStore, get_file_store
from lifecycle import ApplicationLifecycle
from notifier import Notifier, get_notifier
from observability import init_observability
from reporting import Reporting
from request_id_middleware import RequestIdMiddleware
from schemas import Caller, FileUpload
from settings import get_settings


# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    Path(get_settings().upload_dir).mkdir(parents=True, exist_ok=True)
    logger.info("Job board started")
    yield


app = FastAPI(
    title="Job Board",
    description="Backend API for posting jobs, uploading CVs and managing applications",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)


@app.exception_handler(JobBoardError)
async def job_board_error_handler(request: Request, exc: JobBoardError):
    """Turn domain errors into a JSON message the client can show as-is."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log("Request refused", error=exc.code, detail=exc.message, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})


def _to_file_upload(upload: Optional[UploadFile], max_bytes: int) -> Optional[FileUpload]:
    """Read at most ``max_bytes`` of an upload; anything larger is refused unread."""
    if upload is None:
        return None
    too_large = ValidationError(ValidationFailure.FILE_TOO_LARGE, f"File is larger than {max_bytes // 1024} KB")
    if upload.size is not None and upload.size > max_bytes:
        raise too_large
    data = upload.file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise too_large
    return FileUpload(
        filename=upload.filename or "",
        content_type=upload.content_type,
        data=data,
    )


# Add route for favicon.ico
@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- User Endpoints ---
@app.post("/users/", response_model=schemas.User, tags=["Users"])
def create_user_endpoint(user: schemas.UserCreate, db: Session = Depends(get_db)):
    if crud.get_user_by_email(db, email=user.email):
        raise AlreadyRegistered()
    if user.city_id is not None:
        crud.require(db, models.City, user.city_id)
    db_user = crud.create_user(db=db, user=user)
    db.commit()
    db.refresh(db_user)
    logger.info("User registered", user_id=db_user.id, role=db_user.role)
    return db_user


@app.get("/users/me", response_model=schemas.User, tags=["Users"])
def get_me(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_db)):
    """Returns the authenticated user's database record."""
    return crud.require(db, models.User, caller.user_id)


# --- Lookups ---
@app.get("/cities", response_model=List[schemas.City], tags=["Lookups"])
def list_cities_endpoint(db: Session = Depends(get_db)):
    return crud.list_cities(db)


@app.post("/cities", response_model=schemas.City, tags=["Lookups"])
def create_city_endpoint(
    city: schemas.CityCreate,
    admin: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    db_city = crud.create(db, models.City, **city.model_dump())
    db.commit()
    db.refresh(db_city)
    return db_city


@app.get("/categories", response_model=List[schemas.Category], tags=["Lookups"])
def list_categories_endpoint(db: Session = Depends(get_db)):
    return crud.list_categories(db)


@app.post("/categories", response_model=schemas.Category, tags=["Lookups"])
def create_category_endpoint(
    category: schemas.CategoryCreate,
    admin: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    db_category = crud.create(db, models.Category, **category.model_dump())
    db.commit()
    db.refresh(db_category)
    return db_category


# --- Companies ---
@app.post("/companies", response_model=schemas.Company, tags=["Companies"])
def create_company_endpoint(
    name: str = Form(...),
    description: str = Form(...),
    address: str = Form(...),
    phone: str = Form(...),
    website: str = Form(...),
    email: str = Form(...),
    image: UploadFile = File(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    data = schemas.CompanyCreate(
        name=name, description=description, address=address, phone=phone, website=website, email=email
    )
    upload = _to_file_upload(image, get_settings().image_max_bytes)
    return companies.create_company(db, caller, data, upload, file_store)


@app.put("/companies/{company_id}", response_model=schemas.Company, tags=["Companies"])
def update_company_endpoint(
    company_id: int,
    data: schemas.CompanyUpdate,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return companies.update_company(db, company_id, caller, data)


@app.post("/companies/{company_id}/image", response_model=schemas.Company, tags=["Companies"])
def update_company_image_endpoint(
    company_id: int,
    image: UploadFile = File(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    upload = _to_file_upload(image, get_settings().image_max_bytes)
    return companies.update_company_image(db, company_id, caller, upload, file_store)


@app.delete("/companies/{company_id}", tags=["Companies"])
def delete_company_endpoint(
    company_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    companies.delete_company(db, company_id, caller, file_store)
    return {"status": "deleted", "company_id": company_id}


# --- Posts ---
@app.get("/posts", response_model=List[schemas.Post], tags=["Posts"])
def list_posts_endpoint(
    category_id: Optional[int] = None,
    location_id: Optional[int] = None,
    search: Optional[str] = None,
    include_expired: bool = False,
    db: Session = Depends(get_db),
):
    return crud.list_posts(
        db,
        category_id=category_id,
        location_id=location_id,
        search=search,
        include_expired=include_expired,
    )


@app.get("/posts/{post_id}", response_model=schemas.Post, tags=["Posts"])
def get_post_endpoint(post_id: int, db: Session = Depends(get_db)):
    return crud.require(db, models.Post, post_id)


@app.post("/posts", response_model=schemas.Post, tags=["Posts"])
def create_post_endpoint(
    post: schemas.PostCreate,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return companies.create_post(db, caller, post)


@app.delete("/posts/{post_id}", tags=["Posts"])
def delete_post_endpoint(
    post_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    companies.delete_post(db, post_id, caller)
    return {"status": "deleted", "post_id": post_id}


@app.post("/posts/{post_id}/save", response_model=schemas.SavedPost, tags=["Posts"])
def save_post_endpoint(
    post_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return companies.save_post(db, caller, post_id)


@app.delete("/posts/{post_id}/save", tags=["Posts"])
def unsave_post_endpoint(
    post_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    companies.unsave_post(db, caller, post_id)
    return {"status": "deleted", "post_id": post_id}


@app.get("/saved-posts", response_model=List[schemas.Post], tags=["Posts"])
def list_saved_posts_endpoint(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_db)):
    return crud.list_saved_posts(db, caller.user_id)


# --- CV ---
@app.post("/cv", response_model=schemas.CV, tags=["CV"])
def upload_cv_endpoint(
    file: UploadFile = File(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    return CVRegistry(db, file_store).upload(caller, _to_file_upload(file, get_settings().cv_max_bytes))


@app.put("/cv", response_model=schemas.CV, tags=["CV"])
def replace_cv_endpoint(
    file: UploadFile = File(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    return CVRegistry(db, file_store).replace(caller, _to_file_upload(file, get_settings().cv_max_bytes))


@app.get("/cv", response_model=schemas.CV, tags=["CV"])
def get_cv_endpoint(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_db)):
    cv = CVRegistry(db).get_for_user(caller.user_id)
    if cv is None:
        raise NotFoundError("CV")
    return cv


def _cv_file_response(cv: Optional[models.CV], file_store: FileStore) -> FileResponse:
    if cv is None or not file_store.exists(cv.file):
        raise NotFoundError("CV")
    return FileResponse(
        file_store.path_for(cv.file),
        media_type="application/pdf",
        filename=cv.original_filename or "cv.pdf",
    )


@app.get("/cv/file", tags=["CV"])
def download_cv_endpoint(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    return _cv_file_response(CVRegistry(db, file_store).get_for_user(caller.user_id), file_store)


@app.delete("/cv/{cv_id}", tags=["CV"])
def delete_cv_endpoint(
    cv_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    CVRegistry(db, file_store).delete(cv_id, caller)
    return {"status": "deleted", "cv_id": cv_id}


# --- Applications ---
@app.post("/applications", response_model=schemas.Application, tags=["Applications"])
def apply_endpoint(
    application: schemas.ApplicationCreate,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    created = ApplicationLifecycle(db, notifier).apply(caller, application.post_id)
    background_tasks.add_task(notifier.drain)
    return created


@app.delete("/applications/{application_id}", tags=["Applications"])
def withdraw_endpoint(
    application_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    ApplicationLifecycle(db, notifier).withdraw(application_id, caller)
    return {"status": "deleted", "application_id": application_id}


@app.post("/applications/{application_id}/accept", response_model=schemas.Application, tags=["Applications"])
def accept_endpoint(
    application_id: int,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    application = ApplicationLifecycle(db, notifier).accept(application_id, caller)
    background_tasks.add_task(notifier.drain)
    return application


@app.post("/applications/{application_id}/reject", response_model=schemas.Application, tags=["Applications"])
def reject_endpoint(
    application_id: int,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    application = ApplicationLifecycle(db, notifier).reject(application_id, caller)
    background_tasks.add_task(notifier.drain)
    return application


@app.get("/applications/mine", response_model=List[schemas.Application], tags=["Applications"])
def my_applications_endpoint(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_db)):
    return crud.list_applications_for_user(db, caller.user_id)


@app.get("/applications/received", response_model=List[schemas.Application], tags=["Applications"])
def received_applications_endpoint(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_db)):
    return companies.applications_received(db, caller)


@app.get("/applications/{application_id}/cv", tags=["Applications"])
def applicant_cv_endpoint(
    application_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    return _cv_file_response(companies.applicant_cv(db, application_id, caller), file_store)


# --- Admin ---
@app.get("/admin/stats", response_model=schemas.Stats, tags=["Admin"])
def stats_endpoint(
    admin: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    return Reporting(db, file_store).stats()


@app.delete("/admin/users/{user_id}", tags=["Admin"])
def admin_delete_user_endpoint(
    user_id: int,
    admin: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    if user_id == admin.user_id:
        raise SelfDeletion()
    Reporting(db, file_store).delete_user(user_id)
    return {"status": "deleted", "user_id": user_id}


@app.delete("/admin/posts/{post_id}", tags=["Admin"])
def admin_delete_post_endpoint(
    post_id: int,
    admin: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
):
    Reporting(db, file_store).delete_post(post_id)
    return {"status": "deleted", "post_id": post_id}


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
