import logging
import os
from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from library_app.book import Book
from library_app.config import settings
from library_app.database import get_db_connection
from library_app.errors import CirculationError
from library_app.library import Library
from library_app.loan import MAX_LOAN_DAYS

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)

library = Library()

app = FastAPI(title=settings.app_name, version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error mapping ---
@app.exception_handler(CirculationError)
async def circulation_error_handler(request: Request, exc: CirculationError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "invalid"})


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Dependency that validates the API key."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Models ---
class AuthorModel(BaseModel):
    id: int
    name: str
    nationality: Optional[str] = None
    date_of_birth: Optional[str] = None
    biography: Optional[str] = None


class AuthorCreateModel(BaseModel):
    name: str = Field(..., min_length=1)
    nationality: Optional[str] = None
    date_of_birth: Optional[date] = None
    biography: Optional[str] = None


class PublisherModel(BaseModel):
    id: int
    name: str
    address: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None


class PublisherCreateModel(BaseModel):
    name: str = Field(..., min_length=1)
    address: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None


class BookModel(BaseModel):
    id: int
    title: str
    isbn: Optional[str] = None
    author_id: Optional[int] = None
    author_name: Optional[str] = None
    publisher_id: Optional[int] = None
    publisher_name: Optional[str] = None
    genre: Optional[str] = None
    publication_year: Optional[int] = None
    description: Optional[str] = None
    total_copies: int
    available_copies: int
    status: str


class BookCreateModel(BaseModel):
    title: str = Field(..., min_length=1)
    isbn: Optional[str] = None
    author_id: Optional[int] = None
    publisher_id: Optional[int] = None
    genre: Optional[str] = None
    publication_year: Optional[int] = None
    description: Optional[str] = None
    total_copies: int = Field(1, ge=0)


class UpdateBookModel(BaseModel):
    title: Optional[str] = None
    genre: Optional[str] = None
    description: Optional[str] = None
    publication_year: Optional[int] = None
    total_copies: Optional[int] = Field(None, ge=0)
    status: Optional[str] = None


class BookPageModel(BaseModel):
    books: List[BookModel]
    total: int
    limit: int
    offset: int


class MemberModel(BaseModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str
    role: str
    membership_type: str
    is_active: bool


class MemberCreateModel(BaseModel):
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str = "patron"
    membership_type: str = "standard"


class UpdateMemberModel(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    membership_type: Optional[str] = None
    is_active: Optional[bool] = None


class LoanModel(BaseModel):
    id: int
    user_id: int
    book_id: int
    book_title: Optional[str] = None
    member_name: Optional[str] = None
    loan_date: date
    due_date: date
    return_date: Optional[date] = None
    renewal_count: int
    status: str
    fine: str
    days_overdue: int


class LoanCreateModel(BaseModel):
    user_id: int
    book_id: int
    loan_days: Optional[int] = Field(None, ge=1, le=MAX_LOAN_DAYS)


class LoanReturnModel(BaseModel):
    return_date: Optional[date] = None


class LoanPageModel(BaseModel):
    loans: List[LoanModel]
    total: int
    limit: int
    offset: int


class MemberDetailModel(MemberModel):
    loans: List[LoanModel]


class SweepResultModel(BaseModel):
    updated: int
    as_of: date


def _book_or_404(book: Optional[Book]) -> dict:
    if not book:
        raise HTTPException(status_code=404, detail="Book not found.")
    return book.to_dict()


def _loan_dict(loan) -> dict:
    return loan.to_dict(library.loans.today())


# --- Health ---
@app.get("/health")
def health():
    """Lightweight health endpoint with a quick database round-trip."""
    db_ok = True
    try:
        conn = get_db_connection(library.db_file)
        conn.execute("SELECT 1")
        conn.close()
    except Exception:
        logger.exception("Health check could not reach the database")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Authors ---
@app.get("/authors", response_model=List[AuthorModel])
def get_authors(q: Optional[str] = Query(None, description="Search by name or biography")):
    authors = library.search_authors(q) if q else library.list_authors()
    return [a.to_dict() for a in authors]


@app.get("/authors/{author_id}", response_model=AuthorModel)
def get_author(author_id: int):
    author = library.get_author(author_id)
    if not author:
        raise HTTPException(status_code=404, detail="Author not found.")
    return author.to_dict()


@app.post("/authors", response_model=AuthorModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_author(payload: AuthorCreateModel):
    author = library.add_author(
        payload.name,
        nationality=payload.nationality,
        date_of_birth=payload.date_of_birth.isoformat() if payload.date_of_birth else None,
        biography=payload.biography,
    )
    return author.to_dict()


# --- Publishers ---
@app.get("/publishers", response_model=List[PublisherModel])
def get_publishers():
    return [p.to_dict() for p in library.list_publishers()]


@app.post("/publishers", response_model=PublisherModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_publisher(payload: PublisherCreateModel):
    publisher = library.add_publisher(
        payload.name, address=payload.address, website=payload.website, email=payload.email
    )
    return publisher.to_dict()


# --- Books ---
@app.get("/books", response_model=BookPageModel)
def get_books(
    response: Response,
    genre: Optional[str] = None,
    status: Optional[str] = None,
    author_id: Optional[int] = None,
    publisher_id: Optional[int] = None,
    q: Optional[str] = Query(None, description="Search title or ISBN"),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    offset: int = Query(0, ge=0),
):
    filters = dict(genre=genre, status=status, author_id=author_id, publisher_id=publisher_id, search=q)
    books = library.list_books(limit=limit, offset=offset, **filters)
    total = library.count_books(**filters)
    response.headers["X-Total-Count"] = str(total)
    return {"books": [b.to_dict() for b in books], "total": total, "limit": limit, "offset": offset}


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int):
    return _book_or_404(library.find_book(book_id))


@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel):
    book = library.add_book(Book(**payload.model_dump()))
    return book.to_dict()


@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: int, update: UpdateBookModel):
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    return _book_or_404(library.update_book(book_id, **changes))


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: int):
    if not library.remove_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found.")
    return {"message": f"Book {book_id} removed."}


# --- Members ---
@app.get("/members", response_model=List[MemberModel], dependencies=[Depends(get_api_key)])
def get_members(
    is_active: Optional[bool] = None,
    membership_type: Optional[str] = None,
    q: Optional[str] = None,
):
    members = library.list_members(is_active=is_active, membership_type=membership_type, search=q)
    return [m.to_dict() for m in members]


@app.post("/members", response_model=MemberModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_member(payload: MemberCreateModel):
    member = library.add_member(**payload.model_dump())
    return member.to_dict()


@app.get("/members/{member_id}", response_model=MemberDetailModel, dependencies=[Depends(get_api_key)])
def get_member(member_id: int):
    member = library.get_member(member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found.")
    payload = member.to_dict()
    payload["loans"] = [_loan_dict(loan) for loan in library.loans.get_member_loans(member_id)]
    return payload


@app.put("/members/{member_id}", response_model=MemberModel, dependencies=[Depends(get_api_key)])
def update_member(member_id: int, update: UpdateMemberModel):
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    member = library.update_member(member_id, **changes)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found.")
    return member.to_dict()


@app.post("/members/{member_id}/deactivate", response_model=MemberModel, dependencies=[Depends(get_api_key)])
def deactivate_member(member_id: int):
    member = library.deactivate_member(member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found.")
    return member.to_dict()


# --- Loans ---
@app.get("/loans", response_model=LoanPageModel, dependencies=[Depends(get_api_key)])
def get_loans(
    status: Optional[str] = Query(None, description="active, overdue or returned"),
    user_id: Optional[int] = None,
    overdue: bool = False,
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    offset: int = Query(0, ge=0),
):
    loans, total = library.loans.list_loans(
        status=status, user_id=user_id, overdue=overdue, limit=limit, offset=offset
    )
    return {"loans": [_loan_dict(l) for l in loans], "total": total, "limit": limit, "offset": offset}


@app.get("/loans/overdue", response_model=List[LoanModel], dependencies=[Depends(get_api_key)])
def get_overdue_loans():
    return [_loan_dict(l) for l in library.loans.get_overdue_loans()]


@app.post("/loans/sweep-overdue", response_model=SweepResultModel, dependencies=[Depends(get_api_key)])
def sweep_overdue_loans():
    today = library.loans.today()
    return {"updated": library.loans.mark_overdue_loans(today), "as_of": today}


@app.get("/loans/{loan_id}", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def get_loan(loan_id: int):
    return _loan_dict(library.loans.get_loan(loan_id))


@app.post("/loans", response_model=LoanModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_loan(payload: LoanCreateModel):
    loan = library.loans.create_loan(payload.user_id, payload.book_id, payload.loan_days)
    return _loan_dict(loan)


@app.post("/loans/{loan_id}/return", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def return_loan(loan_id: int, payload: Optional[LoanReturnModel] = None):
    return_date = payload.return_date if payload else None
    return _loan_dict(library.loans.return_loan(loan_id, return_date))


@app.post("/loans/{loan_id}/renew", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def renew_loan(loan_id: int):
    return _loan_dict(library.loans.renew_loan(loan_id))


@app.get("/")
def read_root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": os.getenv("ENVIRONMENT", settings.environment),
    }
