"""Async functional registry sync operations."""

from pathlib import Path

from .core.auth import resolve_credential
from .core.reference import ImageReference, parse_image_reference
from .core.registry_client import RegistryClient
from .core.synchronizer import ImageSynchronizer
from .core.types import SyncConfig


def _reference(image: str, username: str | None, password: str | None) -> ImageReference:
    ref = parse_image_reference(image)
    credential = resolve_credential(ref.registry, username, password)
    return ImageReference(
        registry=ref.registry,
        repository=ref.repository,
        reference=ref.reference,
        credential=credential,
        scheme=ref.scheme,
    )


async def check_registry_connectivity(registry_url: str, timeout: int = 10) -> bool:
    """레지스트리 연결 상태를 확인합니다.

    Args:
        registry_url: 레지스트리 URL (예: "http://localhost:15000")
        timeout: 요청 타임아웃 (초, 기본값: 10초)

    Returns:
        bool: 레지스트리가 v2 API를 지원하면 True

    Examples:
        accessible = await check_registry_connectivity("http://localhost:15000")
    """
    config = SyncConfig().registry
    config.timeout = timeout
    async with RegistryClient(registry_url, config=config) as client:
        return await client.check_registry_v2()


async def sync_image(
    source: str,
    destination: str,
    mode: str = "buffer",
    source_username: str | None = None,
    source_password: str | None = None,
    destination_username: str | None = None,
    destination_password: str | None = None,
    timeout: float | None = None,
    config: SyncConfig | None = None,
) -> str:
    """이미지를 원본 레지스트리에서 대상 레지스트리로 복제합니다.

    멀티 플랫폼 인덱스인 경우 모든 플랫폼 매니페스트를 복제한 뒤
    인덱스를 그대로 다시 게시합니다. 모든 blob 전송이 성공해야만
    매니페스트가 게시됩니다.

    Args:
        source: 원본 이미지 (예: "registry.example.com/team/app:1.0",
            "http://localhost:5000/app@sha256:...")
        destination: 대상 이미지 (예: "http://localhost:15000/mirror/app:1.0")
        mode: 전송 방식
            - "buffer": 스트림을 그대로 전달 (디스크 사용 없음)
            - "tarball": blob을 임시 파일에 받은 후 업로드
        source_username: 원본 레지스트리 사용자 (선택사항, 없으면 ~/.docker/config.json)
        source_password: 원본 레지스트리 비밀번호
        destination_username: 대상 레지스트리 사용자
        destination_password: 대상 레지스트리 비밀번호
        timeout: 전체 작업 타임아웃 (초, 기본값: 제한 없음)
        config: 동시성, 메모리 임계값 등 세부 설정

    Returns:
        str: 대상에 게시된 매니페스트 digest (예: "sha256:abc123...")

    Raises:
        RegistryError: 매니페스트/blob 전송 실패 시 (실패 종류와 저장소/digest 포함)

    Examples:
        # 스트리밍 복제
        await sync_image("docker.io/library/alpine:3.19", "http://localhost:15000/alpine:3.19")

        # 임시 파일을 거치는 복제
        await sync_image(
            "http://localhost:5000/app:1.0",
            "http://localhost:15000/app:1.0",
            mode="tarball",
        )
    """
    source_ref = _reference(source, source_username, source_password)
    destination_ref = _reference(destination, destination_username, destination_password)
    async with ImageSynchronizer(config or SyncConfig()) as syncer:
        return await syncer.sync_image(source_ref, destination_ref, mode, timeout)


async def save_image(
    source: str,
    output: str,
    format: str = "docker",
    use_gzip: bool | None = None,
    username: str | None = None,
    password: str | None = None,
    timeout: float | None = None,
    config: SyncConfig | None = None,
) -> Path:
    """레지스트리의 이미지를 로컬 파일로 저장합니다.

    Args:
        source: 원본 이미지 (예: "http://localhost:15000/nginx:alpine")
        output: 출력 경로
            - format="docker": tar 파일 경로 (예: "./nginx.tar")
            - format="oci": OCI 레이아웃 디렉토리 (예: "./nginx-oci")
        format: "docker" (docker load 호환 tar) 또는 "oci" (OCI image layout)
        use_gzip: OCI 레이어 압축 여부 (None: 자동, True: gzip, False: 비압축 tar)
        username: 레지스트리 사용자 (선택사항)
        password: 레지스트리 비밀번호 (선택사항)
        timeout: 전체 작업 타임아웃 (초)
        config: 세부 설정

    Returns:
        Path: 저장된 파일 또는 디렉토리 경로

    Raises:
        RegistryError: 이미지 조회 또는 저장 실패 시

    Examples:
        await save_image("http://localhost:15000/nginx:alpine", "nginx.tar")
        await save_image("http://localhost:15000/nginx:alpine", "nginx-oci", format="oci")
    """
    source_ref = _reference(source, username, password)
    async with ImageSynchronizer(config or SyncConfig()) as syncer:
        return await syncer.save_image(
            source_ref, output, format=format, use_gzip=use_gzip, timeout=timeout
        )


async def tag_image(
    image: str,
    target_tag: str,
    username: str | None = None,
    password: str | None = None,
    config: SyncConfig | None = None,
) -> str:
    """같은 저장소 안에서 기존 이미지에 새 태그를 붙입니다.

    Args:
        image: 태그를 붙일 이미지 (예: "http://localhost:15000/app:1.0")
        target_tag: 새 태그 (예: "latest")
        username: 레지스트리 사용자 (선택사항)
        password: 레지스트리 비밀번호 (선택사항)
        config: 세부 설정

    Returns:
        str: 새 태그가 가리키는 매니페스트 digest

    Examples:
        await tag_image("http://localhost:15000/app:1.0", "stable")
    """
    ref = _reference(image, username, password)
    registry_config = (config or SyncConfig()).registry
    async with RegistryClient(ref.base_url, ref.credential, registry_config) as client:
        return await client.tag_image(ref.repository, ref.reference, target_tag)
