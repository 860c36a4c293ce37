"""In-process fake registry for exercising the client over real HTTP."""

import asyncio
import hashlib
import json
import uuid
from dataclasses import dataclass, field

from aiohttp import web
from aiohttp.test_utils import TestServer

from registry_sync.core.media_types import (
    DOCKER_CONFIG,
    DOCKER_FOREIGN_LAYER,
    DOCKER_LAYER_GZIP,
    DOCKER_MANIFEST_LIST,
    DOCKER_MANIFEST_V2,
)


def sha256(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def make_manifest(config: bytes, layers: list[bytes], foreign: list[bytes] = ()) -> bytes:
    """Docker v2 manifest body for the given config and layer bytes."""
    descriptors = [
        {"mediaType": DOCKER_LAYER_GZIP, "size": len(layer), "digest": sha256(layer)}
        for layer in layers
    ]
    descriptors += [
        {
            "mediaType": DOCKER_FOREIGN_LAYER,
            "size": len(layer),
            "digest": sha256(layer),
            "urls": ["https://example.invalid/layer"],
        }
        for layer in foreign
    ]
    manifest = {
        "schemaVersion": 2,
        "mediaType": DOCKER_MANIFEST_V2,
        "config": {"mediaType": DOCKER_CONFIG, "size": len(config), "digest": sha256(config)},
        "layers": descriptors,
    }
    return json.dumps(manifest, indent=3).encode("utf-8")


def make_index(manifests: list[tuple[bytes, str]]) -> bytes:
    """Docker manifest list body; manifests are (body, architecture) pairs."""
    index = {
        "schemaVersion": 2,
        "mediaType": DOCKER_MANIFEST_LIST,
        "manifests": [
            {
                "mediaType": DOCKER_MANIFEST_V2,
                "size": len(body),
                "digest": sha256(body),
                "platform": {"architecture": arch, "os": "linux"},
            }
            for body, arch in manifests
        ],
    }
    return json.dumps(index).encode("utf-8")


@dataclass
class FakeRegistry:
    """Dict-backed Registry API v2 subset with failure injection."""

    blobs: dict[str, bytes] = field(default_factory=dict)
    manifests: dict[tuple[str, str], tuple[bytes, str]] = field(default_factory=dict)
    redirect_blobs: bool = False
    redirect_without_location: bool = False
    blob_get_status: int | None = None
    omit_blob_length: bool = False
    upload_status: int = 202
    reject_blob_pushes: set[str] = field(default_factory=set)
    reject_manifest_puts: set[str] = field(default_factory=set)
    rate_limit_manifest_gets: int = 0
    blob_delay: float = 0.0
    manifest_delay: float = 0.0
    content_encoding: str | None = None
    events: list[tuple[str, str]] = field(default_factory=list)
    redirect_auth_headers: list[str | None] = field(default_factory=list)
    active_pulls: int = 0
    peak_pulls: int = 0
    active_manifest_gets: int = 0
    peak_manifest_gets: int = 0
    blob_accept_encodings: list[str | None] = field(default_factory=list)

    def add_blob(self, data: bytes) -> str:
        digest = sha256(data)
        self.blobs[digest] = data
        return digest

    def add_manifest(self, repository: str, reference: str, body: bytes, media_type: str) -> None:
        self.manifests[(repository, reference)] = (body, media_type)
        self.manifests[(repository, sha256(body))] = (body, media_type)

    def add_image(self, repository: str, tag: str, config: bytes, layers: list[bytes]) -> bytes:
        self.add_blob(config)
        for layer in layers:
            self.add_blob(layer)
        body = make_manifest(config, layers)
        self.add_manifest(repository, tag, body, DOCKER_MANIFEST_V2)
        return body

    def events_of(self, kind: str) -> list[str]:
        return [target for event, target in self.events if event == kind]

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/v2/", self.handle_base)
        app.router.add_get("/v2/{name:.+}/manifests/{reference}", self.handle_get_manifest)
        app.router.add_put("/v2/{name:.+}/manifests/{reference}", self.handle_put_manifest)
        app.router.add_post("/v2/{name:.+}/blobs/uploads/", self.handle_start_upload)
        app.router.add_put("/v2/{name:.+}/blobs/uploads/{upload_id}", self.handle_finish_upload)
        app.router.add_head("/v2/{name:.+}/blobs/{digest}", self.handle_head_blob)
        app.router.add_get(
            "/v2/{name:.+}/blobs/{digest}", self.handle_get_blob, allow_head=False
        )
        app.router.add_get("/storage/{digest}", self.handle_storage)
        return app

    async def handle_base(self, request: web.Request) -> web.Response:
        return web.json_response({}, headers={"Docker-Distribution-Api-Version": "registry/2.0"})

    async def handle_get_manifest(self, request: web.Request) -> web.Response:
        if self.rate_limit_manifest_gets > 0:
            self.rate_limit_manifest_gets -= 1
            return web.Response(status=429)
        key = (request.match_info["name"], request.match_info["reference"])
        self.events.append(("get_manifest", f"{key[0]}:{key[1]}"))
        self.active_manifest_gets += 1
        self.peak_manifest_gets = max(self.peak_manifest_gets, self.active_manifest_gets)
        try:
            if self.manifest_delay:
                await asyncio.sleep(self.manifest_delay)
        finally:
            self.active_manifest_gets -= 1
        if key not in self.manifests:
            return web.json_response({"errors": [{"code": "MANIFEST_UNKNOWN"}]}, status=404)
        body, media_type = self.manifests[key]
        return web.Response(
            body=body,
            headers={"Content-Type": media_type, "Docker-Content-Digest": sha256(body)},
        )

    async def handle_put_manifest(self, request: web.Request) -> web.Response:
        name, reference = request.match_info["name"], request.match_info["reference"]
        if reference in self.reject_manifest_puts:
            return web.json_response({"errors": [{"code": "DENIED"}]}, status=403)
        body = await request.read()
        self.events.append(("put_manifest", f"{name}:{reference}"))
        self.add_manifest(name, reference, body, request.headers.get("Content-Type", ""))
        return web.Response(status=201, headers={"Docker-Content-Digest": sha256(body)})

    async def handle_start_upload(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        if self.upload_status != 202:
            return web.Response(status=self.upload_status)
        location = f"/v2/{name}/blobs/uploads/{uuid.uuid4().hex}?_state=abc"
        return web.Response(status=202, headers={"Location": location})

    async def handle_finish_upload(self, request: web.Request) -> web.Response:
        digest = request.query.get("digest", "")
        body = await request.read()
        if digest in self.reject_blob_pushes:
            return web.Response(status=500)
        if sha256(body) != digest:
            return web.json_response({"errors": [{"code": "DIGEST_INVALID"}]}, status=400)
        self.blobs[digest] = body
        self.events.append(("push_blob", digest))
        return web.Response(status=201, headers={"Docker-Content-Digest": digest})

    async def handle_head_blob(self, request: web.Request) -> web.StreamResponse:
        digest = request.match_info["digest"]
        if digest not in self.blobs:
            return web.Response(status=404)
        if self.omit_blob_length:
            # Chunked responses carry no Content-Length
            resp = web.StreamResponse(status=200)
            resp.enable_chunked_encoding()
            await resp.prepare(request)
            return resp
        return web.Response(
            status=200, headers={"Content-Length": str(len(self.blobs[digest]))}
        )

    async def handle_get_blob(self, request: web.Request) -> web.StreamResponse:
        digest = request.match_info["digest"]
        self.blob_accept_encodings.append(request.headers.get("Accept-Encoding"))
        if self.blob_get_status is not None:
            return web.Response(status=self.blob_get_status)
        if digest not in self.blobs:
            return web.Response(status=404)
        if self.redirect_without_location:
            return web.Response(status=307)
        if self.redirect_blobs:
            return web.Response(status=307, headers={"Location": f"/storage/{digest}"})
        return await self._serve_blob(digest)

    async def handle_storage(self, request: web.Request) -> web.StreamResponse:
        self.redirect_auth_headers.append(request.headers.get("Authorization"))
        return await self._serve_blob(request.match_info["digest"])

    async def _serve_blob(self, digest: str) -> web.Response:
        self.active_pulls += 1
        self.peak_pulls = max(self.peak_pulls, self.active_pulls)
        try:
            if self.blob_delay:
                await asyncio.sleep(self.blob_delay)
            self.events.append(("pull_blob", digest))
            headers = {}
            if self.content_encoding:
                headers["Content-Encoding"] = self.content_encoding
            return web.Response(
                body=self.blobs[digest],
                content_type="application/octet-stream",
                headers=headers,
            )
        finally:
            self.active_pulls -= 1


class RunningRegistry:
    """FakeRegistry served on localhost for the duration of a test."""

    def __init__(self, registry: FakeRegistry) -> None:
        self.registry = registry
        self.server = TestServer(registry.app())

    async def start(self) -> "RunningRegistry":
        await self.server.start_server()
        return self

    async def close(self) -> None:
        await self.server.close()

    @property
    def url(self) -> str:
        return f"http://{self.server.host}:{self.server.port}"

    @property
    def host(self) -> str:
        return f"{self.server.host}:{self.server.port}"
