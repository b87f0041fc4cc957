"""Search router - global search across approved posts and members."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from insureconnect.core.deps import get_current_session, get_db
from insureconnect.schemas.auth import UserSession
from insureconnect.schemas.search import SearchResponse
from insureconnect.services import post_service, search_service
from insureconnect.services.search_service import SearchScope

router = APIRouter()


@router.get("", response_model=SearchResponse, response_model_exclude_unset=True)
def search(
    q: str = Query(..., description="Search text (at least 2 characters)"),
    type: SearchScope = Query(SearchScope.ALL),
    limit: int = Query(10, ge=1, le=50),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    results = search_service.search(db, q, scope=type, limit=limit)
    if "posts" in results:
        results["posts"] = post_service.to_post_reads(db, results["posts"], viewer_id=session.user_id)
    # Sections outside the requested scope are left out of the response
    return SearchResponse(**results)
