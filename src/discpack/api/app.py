"""HTTP routes for registering servers and managing their custom discs."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import JSONResponse

from ..errors import ProvisioningError, ValidationFailure
from ..pipeline import CreateDiscRequest, DeleteDiscRequest, PackProvisioner
from ..settings import DiscPackSettings


class RegisterPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    platform_version: str | None = Field(None, alias="mcVersion")


class CreateDiscPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(..., min_length=1)
    disc_name: str = Field(..., alias="discName")
    audio_type: str = Field("mono", alias="audioType")
    custom_model_data: int = Field(..., alias="customModelData")
    token: str = Field(..., min_length=1)
    platform_version: str | None = Field(None, alias="mcVersion")


class DeleteDiscPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    disc_name: str = Field(..., alias="discName")
    token: str = Field(..., min_length=1)
    platform_version: str | None = Field(None, alias="mcVersion")


def create_app(
    settings: DiscPackSettings | None = None,
    *,
    provisioner: PackProvisioner | None = None,
) -> FastAPI:
    """Create a FastAPI app exposing the disc pack endpoints."""

    resolved_settings = settings or DiscPackSettings.from_env()
    service = provisioner or PackProvisioner.from_settings(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        del app
        yield
        service.admission.shutdown()

    app = FastAPI(
        title="Disc Pack API",
        version="0.1.0",
        description=(
            "Registers game servers and embeds audio from URLs into their "
            "resource packs as custom music discs."
        ),
        lifespan=lifespan,
    )

    @app.exception_handler(ProvisioningError)
    def _provisioning_error_handler(
        request: Request, exc: ProvisioningError
    ) -> JSONResponse:
        del request
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    def _request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        del request
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:]) or 'body'}: {error['msg']}"
            for error in exc.errors()
        )
        failure = ValidationFailure(f"Invalid request: {problems}")
        return JSONResponse(status_code=failure.status_code, content=failure.to_payload())

    @app.post("/register-mc-server")
    def register_server(payload: RegisterPayload | None = None) -> JSONResponse:
        version = payload.platform_version if payload is not None else None
        result = service.register(version)
        return JSONResponse(content=result.to_payload())

    @app.post("/create-custom-disc")
    def create_custom_disc(payload: CreateDiscPayload) -> JSONResponse:
        result = service.create_disc(
            CreateDiscRequest(
                token=payload.token,
                url=payload.url,
                disc_name=payload.disc_name,
                model_discriminator=payload.custom_model_data,
                channel_mode=payload.audio_type,
                platform_version=payload.platform_version,
            )
        )
        return JSONResponse(content=result.to_payload())

    @app.post("/delete-custom-disc")
    def delete_custom_disc(payload: DeleteDiscPayload) -> JSONResponse:
        result = service.delete_disc(
            DeleteDiscRequest(
                token=payload.token,
                disc_name=payload.disc_name,
                platform_version=payload.platform_version,
            )
        )
        return JSONResponse(content=result.to_payload())

    @app.get("/health")
    def health() -> dict[str, object]:
        return {
            "status": "ok",
            "activeTokens": len(service.admission.active_tokens()),
            "usedBytes": service.ledger.used_bytes(),
            "quotaBytes": service.ledger.cap_bytes,
        }

    return app


__all__ = ["create_app"]
