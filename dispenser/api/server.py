"""
HTTP server for the token dispenser.

POST /token   exchange a GitHub Actions OIDC token for a scoped installation token
GET  /healthz liveness
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dispenser.auth.util import redact_text
from dispenser.config import DispenserConfig, load_config
from dispenser.errors import GENERIC_EXTERNAL_MESSAGE, DispenserError, InvalidRequest
from dispenser.providers.github_provider import CredentialMinter, GitHubAppMinter
from dispenser.rules.repository import FileRuleRepository, InMemoryRuleRepository, RuleRepository
from dispenser.service import TokenRequest, TokenService

logger = logging.getLogger(__name__)

_service: Optional[TokenService] = None
_service_lock = threading.Lock()


def load_rule_repository(cfg: DispenserConfig) -> RuleRepository:
    if not cfg.rules_file:
        logger.warning("RULES_FILE not set; no repository has any rules, every request will be denied")
        return InMemoryRuleRepository()
    return FileRuleRepository.from_file(cfg.rules_file)


def build_token_service(cfg: DispenserConfig, *, minter: Optional[CredentialMinter] = None) -> TokenService:
    """
    Wire the service from config. Raises ConfigurationError on bad policy so
    the process refuses to start instead of serving partially-valid rules.
    """
    if not cfg.oidc_audience:
        logger.warning("OIDC_AUDIENCE not set; token audience will not be checked")
    if minter is None:
        if not cfg.minting_configured:
            logger.warning("GitHub App credentials not configured (APP_ID + PRIVATE_KEY_FILE); minting will fail")
        minter = GitHubAppMinter(cfg)

    rules = load_rule_repository(cfg)
    return TokenService.from_config(cfg, rules=rules, minter=minter)


def get_token_service() -> TokenService:
    global _service
    if _service is not None:
        return _service
    with _service_lock:
        if _service is None:
            _service = build_token_service(load_config())
        return _service


def set_token_service(service: Optional[TokenService]) -> None:
    """Set service instance (for testing / CLI wiring)."""
    global _service
    _service = service


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": status_code})


app = FastAPI(title="GitHub Actions token dispenser")


@app.exception_handler(DispenserError)
async def _dispenser_error_handler(request: Request, exc: DispenserError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, redact_text(str(exc)))
    else:
        logger.info("%s %s denied (%s): %s", request.method, request.url.path, type(exc).__name__, redact_text(str(exc)))
    return _error_response(exc.status_code, exc.external_message)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Only locations and error types; `input` may carry the caller's token.
    problems = [f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('type')}" for e in exc.errors()]
    logger.info("%s %s rejected body: %s", request.method, request.url.path, "; ".join(problems))
    return _error_response(400, InvalidRequest.default_external_message)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception(
            "%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, redact_text(str(e))
        )
        return _error_response(500, GENERIC_EXTERNAL_MESSAGE)
    process_time = time.time() - start_time
    logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
    return response


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.post("/token")
def generate_token(req: TokenRequest) -> Dict[str, Any]:
    """Verify the caller's OIDC token, authorize the request and mint a scoped token."""
    res = get_token_service().generate_token(req)
    logger.info("Sent installation token for %s", res.repository)
    return res.to_json_dict()


def run(host: str = "0.0.0.0", port: int = 9999) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    # Fail fast on bad policy/config before binding the port.
    get_token_service()

    logger.info("Starting token dispenser on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
