try:
    import fastapi  # noqa: F401
except ModuleNotFoundError as e:
    raise ImportError(
        "FastAPI integration requires 'fastapi'. Install it with: uv add fastapi_license_key[fastapi]"
    ) from e

from typing import Annotated, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Security, status
from fastapi.security import APIKeyHeader

from fastapi_license_key._schemas import (
    ActivateIn,
    ActivateOut,
    CheckOut,
    DeletedOut,
    GenerateIn,
    GenerateOut,
    InfoOut,
    ResetIn,
    ResetOut,
    StatsOut,
    StatusOut,
    _to_activate_out,
    _to_check_out,
    _to_deleted_out,
    _to_generate_out,
    _to_info_out,
    _to_reset_out,
    _to_stats_out,
)
from fastapi_license_key.domain.errors import (
    GenerationIncomplete,
    InvalidRequest,
    KeyAlreadyActivated,
    KeyExpired,
    KeyNotFound,
    LicenseKeyError,
    MissingCredential,
    NotOwner,
    ResetLimitExceeded,
    StorageFailure,
    Unauthorized,
)
from fastapi_license_key.services.base import AbstractLicenseKeyService

ADMIN_SCHEME_NAME = "Admin Token"

_ERROR_STATUS = (
    (KeyNotFound, status.HTTP_404_NOT_FOUND),
    (Unauthorized, status.HTTP_401_UNAUTHORIZED),
    (NotOwner, status.HTTP_403_FORBIDDEN),
    (ResetLimitExceeded, status.HTTP_403_FORBIDDEN),
    (KeyAlreadyActivated, status.HTTP_409_CONFLICT),
    (KeyExpired, status.HTTP_410_GONE),
    (MissingCredential, status.HTTP_400_BAD_REQUEST),
    (InvalidRequest, 422),
    (GenerationIncomplete, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (StorageFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _to_http_exception(exc: LicenseKeyError) -> HTTPException:
    """Map a domain error to the HTTP error returned to the client."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_cls, code in _ERROR_STATUS:
        if isinstance(exc, error_cls):
            status_code = code
            break

    if isinstance(exc, GenerationIncomplete):
        detail = {
            "error": str(exc),
            "persisted_keys": exc.persisted,
            "expires_at": exc.expires_at.isoformat() if exc.expires_at else None,
        }
        return HTTPException(status_code=status_code, detail=detail)

    if isinstance(exc, Unauthorized):
        return HTTPException(
            status_code=status_code,
            detail=str(exc),
            headers={"WWW-Authenticate": ADMIN_SCHEME_NAME},
        )

    return HTTPException(status_code=status_code, detail=str(exc))


def _origin(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def create_license_keys_router(
    depends_svc_license_keys: Callable[..., Awaitable[AbstractLicenseKeyService]],
    router: Optional[APIRouter] = None,
    project_name: str = "License Key Service",
    version: str = "2.0",
) -> APIRouter:
    """Create and configure the license keys router.

    Args:
        depends_svc_license_keys: Dependency callable that provides a license key service.
        router: Optional `APIRouter` instance. If not provided, a new one is created.
        project_name: Name reported by the status endpoint.
        version: Version reported by the status endpoint.

    Returns:
        Configured `APIRouter` ready to be included into a FastAPI app.
    """
    router = router or APIRouter(tags=["License Keys"])
    admin_token = APIKeyHeader(
        name="X-Admin-Token",
        auto_error=False,
        scheme_name=ADMIN_SCHEME_NAME,
        description="Shared administrative credential.",
    )

    @router.get(
        path="/",
        response_model=StatusOut,
        status_code=status.HTTP_200_OK,
        summary="Service status",
    )
    async def service_status() -> StatusOut:
        return StatusOut(
            project=project_name,
            version=version,
            endpoints={
                "check": "GET /check?key=XXX&hwid=YYY",
                "activate": "POST /activate",
                "info": "GET /info?key=XXX",
                "reset": "POST /reset",
                "generate": "POST /generate (admin)",
                "stats": "GET /stats (admin)",
                "delete": "DELETE /keys/{key} (admin)",
            },
        )

    @router.post(
        path="/generate",
        response_model=GenerateOut,
        status_code=status.HTTP_201_CREATED,
        summary="Generate license keys",
    )
    async def generate_keys(
        payload: GenerateIn,
        request: Request,
        token: Optional[str] = Security(admin_token),
        svc: AbstractLicenseKeyService = Depends(depends_svc_license_keys),
    ) -> GenerateOut:
        """Generate a batch of keys sharing one expiration.

        Raises:
            HTTPException: 401 on a bad admin token, 500 with the persisted
                keys if the batch stopped half-way.
        """
        try:
            result = await svc.generate(
                count=payload.count,
                validity_days=payload.validity_days,
                notes=payload.notes,
                max_resets=payload.max_resets,
                admin_credential=token,
                origin=_origin(request),
            )
        except LicenseKeyError as exc:
            raise _to_http_exception(exc) from exc

        return _to_generate_out(result)

    @router.get(
        path="/check",
        response_model=CheckOut,
        status_code=status.HTTP_200_OK,
        summary="Check a license key for a device",
    )
    async def check_key(
        request: Request,
        key: Annotated[str, Query(min_length=1, description="License key")],
        hwid: Annotated[str, Query(min_length=1, description="Hardware identifier")],
        svc: AbstractLicenseKeyService = Depends(depends_svc_license_keys),
    ) -> CheckOut:
        try:
            result = await svc.check(key, hwid, origin=_origin(request))
        except LicenseKeyError as exc:
            raise _to_http_exception(exc) from exc

        return _to_check_out(result)

    @router.post(
        path="/activate",
        response_model=ActivateOut,
        status_code=status.HTTP_200_OK,
        summary="Activate a license key",
    )
    async def activate_key(
        payload: ActivateIn,
        request: Request,
        svc: AbstractLicenseKeyService = Depends(depends_svc_license_keys),
    ) -> ActivateOut:
        """Bind a key to a Discord user and a device.

        Raises:
            HTTPException: 404 if the key does not exist, 409 if another user
                owns it, 410 if it is expired.
        """
        try:
            result = await svc.activate(
                payload.key,
                hwid=payload.hwid,
                discord_id=payload.discord_id,
                origin=_origin(request),
            )
        except LicenseKeyError as exc:
            raise _to_http_exception(exc) from exc

        return _to_activate_out(result)

    @router.get(
        path="/info",
        response_model=InfoOut,
        status_code=status.HTTP_200_OK,
        summary="Get information about a license key",
    )
    async def key_info(
        key: Annotated[str, Query(min_length=1, description="License key")],
        svc: AbstractLicenseKeyService = Depends(depends_svc_license_keys),
    ) -> InfoOut:
        try:
            result = await svc.info(key)
        except LicenseKeyError as exc:
            raise _to_http_exception(exc) from exc

        return _to_info_out(result)

    @router.post(
        path="/reset",
        response_model=ResetOut,
        status_code=status.HTTP_200_OK,
        summary="Reset the HWID of a license key",
    )
    async def reset_hwid(
        payload: ResetIn,
        request: Request,
        token: Optional[str] = Security(admin_token),
        svc: AbstractLicenseKeyService = Depends(depends_svc_license_keys),
    ) -> ResetOut:
        """Reset as administrator (admin token header) or as the key owner (discord_id).

        Raises:
            HTTPException: 404 if the key does not exist, 403 for a foreign
                owner or an exhausted reset allowance, 400 without credential.
        """
        try:
            result = await svc.reset(
                payload.key,
                admin_credential=token,
                discord_id=payload.discord_id,
                origin=_origin(request),
            )
        except LicenseKeyError as exc:
            raise _to_http_exception(exc) from exc

        return _to_reset_out(result)

    @router.get(
        path="/stats",
        response_model=StatsOut,
        status_code=status.HTTP_200_OK,
        summary="Key statistics",
    )
    async def key_stats(
        token: Optional[str] = Security(admin_token),
        svc: AbstractLicenseKeyService = Depends(depends_svc_license_keys),
    ) -> StatsOut:
        try:
            result = await svc.stats(admin_credential=token)
        except LicenseKeyError as exc:
            raise _to_http_exception(exc) from exc

        return _to_stats_out(result)

    @router.delete(
        path="/keys/{key}",
        response_model=DeletedOut,
        status_code=status.HTTP_200_OK,
        summary="Delete a license key",
    )
    async def delete_key(
        key: str,
        request: Request,
        reason: Annotated[Optional[str], Query(max_length=1024, description="Why the key is deleted")] = None,
        token: Optional[str] = Security(admin_token),
        svc: AbstractLicenseKeyService = Depends(depends_svc_license_keys),
    ) -> DeletedOut:
        try:
            result = await svc.delete(
                key,
                admin_credential=token,
                reason=reason,
                origin=_origin(request),
            )
        except LicenseKeyError as exc:
            raise _to_http_exception(exc) from exc

        return _to_deleted_out(result)

    return router
