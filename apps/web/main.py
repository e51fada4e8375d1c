"""FastAPI web application for cratefix."""

from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from cratefix import mutator
from cratefix.config import load_settings
from cratefix.crate_spec import CrateSpec
from cratefix.document import parse
from cratefix.errors import CratefixError, InvalidRequest
from cratefix.locator import find
from cratefix.models import ChangeRecord, DependencySpec, DepKind, DepTable
from cratefix.policy import TargetVersion, select_latest
from cratefix.registry import CratesRegistry
from cratefix.reporter import ChangeReporter
from cratefix.semver import BumpLevel, Version, VersionReq

app = FastAPI(
    title="cratefix",
    description="Edit Cargo.toml dependencies and versions without disturbing formatting",
    version="0.1.0",
)

_KINDS = {"normal": DepKind.NORMAL, "dev": DepKind.DEVELOPMENT, "build": DepKind.BUILD}


class AddPayload(BaseModel):
    """Request model for adding a dependency."""
    content: str
    crate: str
    kind: str = "normal"
    target: Optional[str] = None
    rename: Optional[str] = None
    features: Optional[list[str]] = None
    default_features: Optional[bool] = None
    optional: Optional[bool] = None


class RemovePayload(BaseModel):
    """Request model for removing a dependency."""
    content: str
    name: str
    kind: str = "normal"
    target: Optional[str] = None


class SetVersionPayload(BaseModel):
    """Request model for changing the package version."""
    content: str
    version: Optional[str] = None
    bump: Optional[BumpLevel] = None
    metadata: Optional[str] = None


class EditResponse(BaseModel):
    """Response model for every manifest edit."""
    original_content: str
    updated_content: str
    changes: list[dict]
    has_changes: bool


def _table(kind: str, target: Optional[str]) -> DepTable:
    if kind not in _KINDS:
        raise InvalidRequest(f"unknown dependency kind `{kind}`; expected one of {', '.join(_KINDS)}")
    return DepTable(_KINDS[kind], target)


def _response(original: str, updated: str, changes: list[ChangeRecord]) -> EditResponse:
    return EditResponse(
        original_content=original,
        updated_content=updated,
        changes=ChangeReporter(changes).as_dicts(),
        has_changes=bool(changes),
    )


async def _latest_requirement(name: str) -> VersionReq:
    settings = load_settings()
    registry = CratesRegistry(
        index_url=settings.index_url,
        timeout=settings.timeout,
        max_concurrency=settings.max_concurrency,
        offline=settings.offline,
    )
    latest = select_latest(await registry.get_versions(name), name=name)
    return VersionReq.caret(latest.version)


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


@app.post("/api/add", response_model=EditResponse)
async def add_dependency(payload: AddPayload):
    """Add a dependency to manifest text."""
    try:
        crate = CrateSpec.parse(payload.crate)
        if crate.name is None:
            raise InvalidRequest("path dependencies cannot be added through the API")
        document = parse(payload.content)
        table = _table(payload.kind, payload.target)
        requirement = crate.requirement
        if requirement is None and find(document, table, payload.rename or crate.name) is None:
            requirement = await _latest_requirement(crate.name)
        spec = DependencySpec(
            name=crate.name,
            requirement=requirement,
            rename=payload.rename,
            features=tuple(payload.features) if payload.features is not None else None,
            default_features=payload.default_features,
            optional=payload.optional,
        )
        changes = mutator.add(document, spec, table, "Cargo.toml")
        return _response(payload.content, document.render(), changes)
    except CratefixError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error editing manifest: {str(e)}")


@app.post("/api/remove", response_model=EditResponse)
async def remove_dependency(payload: RemovePayload):
    """Remove a dependency from manifest text."""
    try:
        document = parse(payload.content)
        changes = mutator.remove(document, payload.name, _table(payload.kind, payload.target), "Cargo.toml")
        return _response(payload.content, document.render(), changes)
    except CratefixError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error editing manifest: {str(e)}")


@app.post("/api/set-version", response_model=EditResponse)
async def set_package_version(payload: SetVersionPayload):
    """Change the package version in manifest text."""
    try:
        if payload.version is not None and payload.bump is not None:
            raise InvalidRequest("give either an explicit version or a bump level, not both")
        if payload.version is not None:
            target = TargetVersion.absolute(Version.parse(payload.version), payload.metadata)
        elif payload.bump is not None:
            target = TargetVersion.relative(payload.bump, payload.metadata)
        else:
            target = TargetVersion.relative(BumpLevel.RELEASE, payload.metadata)

        document = parse(payload.content)
        current = mutator.package_version(document)
        if current is None:
            raise InvalidRequest("the manifest does not set `package.version` itself")
        version = target.apply(current)
        changes = []
        if version is not None:
            changes = mutator.set_package_version(document, version, manifest="Cargo.toml")
        return _response(payload.content, document.render(), changes)
    except CratefixError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error editing manifest: {str(e)}")
