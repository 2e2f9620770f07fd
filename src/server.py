"""
FastAPI server for the Lost & Found Alerts service.

Exposes:
  - GET /health - Health check
  - POST /run-graph - Execute a graph (publish_notify, nearby_posts)
  - /users/{user_id}/subscriptions - Manage subscription zones
  - /posts/{post_id}/place - Maintain listing locations
  - POST /geocode - Resolve an address to coordinates
  - GET /docs - Interactive API documentation (Swagger UI)
"""

from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Request, status, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Dict, Any, Optional, Annotated
import time

# Import configuration (loads .env automatically)
from src.config import config, validate_config

# Import logging setup
from src.utils.logging_config import logger, setup_logging

# Import graphs and collaborators
from src.graphs.nearby_posts import create_nearby_posts_graph
from src.graphs.publish_notify import create_publish_notify_graph
from src.tools.firestore_tools import FirestoreStore
from src.tools.geocode_tools import geocode_address
from src.tools.mail_tools import Notifier, SmtpMailTransport
from src.utils.errors import (
    FirestoreUnavailableError,
    GeocodingError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
)

# Setup logging
setup_logging(debug=config.DEBUG)

# ============================================================
# VALIDATE CONFIGURATION AT STARTUP
# ============================================================
try:
    config_status = validate_config()
    logger.info("Configuration validated successfully")
    for key, value in config_status.items():
        logger.info(f"  {key}: {value}")
except ValueError as e:
    logger.error(f"Configuration error: {e}")
    exit(1)

# ============================================================
# FASTAPI APPLICATION
# ============================================================
app = FastAPI(
    title="Lost & Found Alerts Service",
    description="Proximity alerts and nearby-post queries for the lost & found board",
    version="1.0.0",
)

# ============================================================
# CORS CONFIGURATION
# ============================================================
# Allow requests from the web app during dev and production.
origins = [
    "http://localhost:3000",  # Next.js dev
    config.PUBLIC_APP_URL.rstrip("/"),
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

GRAPH_NAMES = ("publish_notify", "nearby_posts")


# ============================================================
# DEPENDENCIES
# ============================================================
def get_store() -> FirestoreStore:
    """Firestore store shared by every request."""
    return FirestoreStore()


def get_notifier() -> Notifier:
    """Notifier backed by the configured SMTP server."""
    return Notifier(
        SmtpMailTransport(config.EMAIL_SMTP_URL, config.EMAIL_FROM),
        base_url=config.PUBLIC_APP_URL,
        max_workers=config.NOTIFY_MAX_WORKERS,
    )


def verify_service_token(
    authorization: Annotated[Optional[str], Header()] = None,
) -> None:
    """Validate the shared bearer token if one is configured."""
    if config.SERVICE_TOKEN:
        expected = f"Bearer {config.SERVICE_TOKEN}"
        if authorization != expected:
            logger.warning("Unauthorized request: invalid or missing token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
            )


# ============================================================
# REQUEST/RESPONSE MODELS
# ============================================================
class GraphRequest(BaseModel):
    """
    Request body for /run-graph endpoint.

    Attributes:
        graph (str): Name of graph to execute ('publish_notify', 'nearby_posts')
        input (dict): Input state for the graph.
    """
    graph: str
    input: Dict[str, Any]


class GraphResponse(BaseModel):
    """
    Response body for /run-graph endpoint.

    Attributes:
        success (bool): Whether graph executed successfully
        graph (str): Name of the graph that was executed
        data (dict): Output from the graph
        error (Optional[str]): Error message if something went wrong
    """
    success: bool
    graph: str
    data: Dict[str, Any] = {}
    error: Optional[str] = None


class SubscriptionCreate(BaseModel):
    name: str = ""
    radiusKm: Any = None
    enabled: bool = False
    location: Optional[Dict[str, Any]] = None
    userEmail: Optional[str] = None


class SubscriptionUpdate(BaseModel):
    name: Optional[Any] = None
    radiusKm: Optional[Any] = None
    enabled: Optional[bool] = None
    location: Optional[Dict[str, Any]] = None


class PostPlaceRequest(BaseModel):
    geo: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    placeName: Optional[str] = None


class GeocodeRequest(BaseModel):
    address: str
    countryCode: Optional[str] = None


# ============================================================
# MIDDLEWARE
# ============================================================
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Adds X-Process-Time header to all responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# ============================================================
# ROUTES
# ============================================================

@app.get("/health", tags=["System"])
async def health_check() -> Dict[str, str]:
    """Health check endpoint used by load balancers and monitoring."""
    return {"status": "healthy"}


@app.get("/", tags=["System"])
async def root() -> Dict[str, str]:
    """Returns information about the API and how to access documentation."""
    return {
        "service": "Lost & Found Alerts Service",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


def _graph_output(graph_name: str, result: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the serializable fields a caller is allowed to see."""
    if graph_name == "publish_notify":
        return {
            "matches": [m.to_dict() for m in result.get("matches", [])],
            "notifications": result.get("notifications", []),
            "skipped_reason": result.get("skipped_reason"),
            "response_metadata": result.get("response_metadata", {}),
        }
    output = {
        "posts": result.get("posts", []),
        "response_metadata": result.get("response_metadata", {}),
    }
    if result.get("reason"):
        output["reason"] = result["reason"]
    return output


@app.post(
    "/run-graph",
    response_model=GraphResponse,
    tags=["Graphs"],
    dependencies=[Depends(verify_service_token)],
)
def run_graph(
    request: GraphRequest,
    store: FirestoreStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> GraphResponse:
    """
    Execute a graph and return results.

    Supported graphs:
      - publish_notify: alert zones around a listing that just became public
      - nearby_posts: recent public listings inside a user's zones
    """
    logger.info(f"Received request for graph: {request.graph}")
    logger.debug(f"Input keys: {list(request.input.keys())}")

    if request.graph == "publish_notify":
        graph = create_publish_notify_graph(store=store, notifier=notifier)
    elif request.graph == "nearby_posts":
        graph = create_nearby_posts_graph(store=store)
    else:
        logger.error(f"Unknown graph: {request.graph}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown graph: {request.graph}. "
                   f"Valid options: {', '.join(GRAPH_NAMES)}",
        )

    start_time = time.time()
    try:
        result = graph.invoke(request.input)
    except Exception as e:
        execution_time = time.time() - start_time
        logger.error(f"{request.graph} graph failed after {execution_time:.2f}s: {str(e)}")
        logger.exception("Full traceback:")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Graph execution failed: {str(e)}",
        )

    execution_time = time.time() - start_time
    error = result.get("error")
    logger.info(
        "run-graph summary: graph=%s input_keys=%s success=%s time=%.2fs",
        request.graph,
        list(request.input.keys()),
        not error,
        execution_time,
    )
    if error:
        # Input problems stay 4xx; store failures surface as a generic 5xx.
        raise HTTPException(
            status_code=result.get("error_status", status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=error,
        )
    return GraphResponse(
        success=True,
        graph=request.graph,
        data=_graph_output(request.graph, result),
    )


@app.get(
    "/users/{user_id}/subscriptions",
    tags=["Subscriptions"],
    dependencies=[Depends(verify_service_token)],
)
def list_subscriptions(
    user_id: str, store: FirestoreStore = Depends(get_store)
) -> Dict[str, Any]:
    return {"ok": True, "subscriptions": store.list_user_subscriptions(user_id)}


@app.post(
    "/users/{user_id}/subscriptions",
    tags=["Subscriptions"],
    dependencies=[Depends(verify_service_token)],
)
def create_subscription(
    user_id: str,
    body: SubscriptionCreate,
    store: FirestoreStore = Depends(get_store),
) -> Dict[str, Any]:
    payload = body.model_dump(exclude={"userEmail"})
    subscription = store.create_subscription(user_id, body.userEmail, payload)
    return {"ok": True, "subscription": subscription}


@app.patch(
    "/users/{user_id}/subscriptions/{subscription_id}",
    tags=["Subscriptions"],
    dependencies=[Depends(verify_service_token)],
)
def update_subscription(
    user_id: str,
    subscription_id: str,
    body: SubscriptionUpdate,
    store: FirestoreStore = Depends(get_store),
) -> Dict[str, Any]:
    payload = body.model_dump(exclude_unset=True)
    subscription = store.update_subscription(subscription_id, user_id, payload)
    return {"ok": True, "subscription": subscription}


@app.delete(
    "/users/{user_id}/subscriptions/{subscription_id}",
    tags=["Subscriptions"],
    dependencies=[Depends(verify_service_token)],
)
def delete_subscription(
    user_id: str,
    subscription_id: str,
    store: FirestoreStore = Depends(get_store),
) -> Dict[str, Any]:
    store.delete_subscription(subscription_id, user_id)
    return {"ok": True}


@app.put(
    "/posts/{post_id}/place",
    tags=["Listing locations"],
    dependencies=[Depends(verify_service_token)],
)
def upsert_post_place(
    post_id: str,
    body: PostPlaceRequest,
    store: FirestoreStore = Depends(get_store),
) -> Dict[str, Any]:
    point = store.upsert_post_place(
        post_id, body.geo, description=body.description, place_name=body.placeName
    )
    return {"ok": True, "geo": point.to_dict() if point else None}


@app.delete(
    "/posts/{post_id}/place",
    tags=["Listing locations"],
    dependencies=[Depends(verify_service_token)],
)
def delete_post_place(
    post_id: str, store: FirestoreStore = Depends(get_store)
) -> Dict[str, Any]:
    store.delete_post_place(post_id)
    return {"ok": True}


@app.post("/geocode", tags=["Geocoding"], dependencies=[Depends(verify_service_token)])
def geocode(body: GeocodeRequest) -> Dict[str, Any]:
    if not body.address.strip():
        raise InvalidInputError("Address is required")
    result = geocode_address(body.address, body.countryCode)
    if result is None:
        raise NotFoundError("Address not found")
    return {"ok": True, **result}


# ============================================================
# ERROR HANDLERS
# ============================================================

def _error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "status_code": status_code},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with consistent error response format."""
    logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
    return _error_response(exc.status_code, exc.detail)


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return _error_response(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    return _error_response(status.HTTP_403_FORBIDDEN, str(exc) or "Forbidden")


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(status.HTTP_404_NOT_FOUND, str(exc) or "Not found")


@app.exception_handler(FirestoreUnavailableError)
async def firestore_unavailable_handler(request: Request, exc: FirestoreUnavailableError):
    logger.error(f"Firestore unavailable: {str(exc)}")
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Failed to load data")


@app.exception_handler(GeocodingError)
async def geocoding_error_handler(request: Request, exc: GeocodingError):
    logger.error(f"Geocoding failed: {str(exc)}")
    return _error_response(status.HTTP_502_BAD_GATEWAY, str(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle unexpected exceptions.

    Never returns the exception message to the client; use logging instead.
    """
    logger.error(f"Unhandled exception: {str(exc)}")
    logger.exception("Full traceback:")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# ============================================================
# STARTUP EVENTS
# ============================================================

@app.on_event("startup")
async def startup_event():
    """Log startup info once configuration has been validated."""
    logger.info("=" * 60)
    logger.info("Lost & Found Alerts Service Starting Up")
    logger.info("=" * 60)
    logger.info(f"Firebase Project: {config.FIREBASE_PROJECT_ID}")
    logger.info(f"Mail: {'SMTP' if config.EMAIL_SMTP_URL else 'disabled'}")
    logger.info(f"Debug Mode: {config.DEBUG}")
    logger.info(f"Nearby scan window: {config.NEARBY_SCAN_LIMIT}")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Lost & Found Alerts Service Shutting Down")


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    """Run with: python -m uvicorn src.server:app --reload"""
    import uvicorn
    uvicorn.run(
        app,
        host=config.HOST,
        port=config.PORT,
        log_level="info" if not config.DEBUG else "debug"
    )
