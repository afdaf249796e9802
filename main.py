import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from database import Database, get_db
from errors import ApiError
from logging_setup import configure_logging
from schemas import COLLECTIONS
import routes_admin
import routes_auth
import routes_customer
import routes_public
import routes_seller
import routes_upload

settings = get_settings()
configure_logging(settings.log_level, json_output=settings.is_production)
logger = structlog.get_logger(__name__)

app = FastAPI(title="TifinCart API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (routes_auth, routes_customer, routes_public, routes_seller, routes_admin, routes_upload):
    app.include_router(module.router)


# ===================== Error envelope =====================
@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, status=exc.status_code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={
        "success": False,
        "error": "Invalid request data",
        "data": {"errors": errors},
    })


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


# ===================== Service Endpoints =====================
@app.get("/")
def root():
    return {"message": "TifinCart API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db.is_configured:
            response["collections"] = db.db.list_collection_names()
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
    response["database_name"] = "✅ Set" if settings.database_name else "❌ Not Set"
    return response


@app.get("/schema")
def get_schema():
    return {
        "collections": COLLECTIONS,
        "notes": "Each class in schemas.py maps to a MongoDB collection (lowercase)."
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
