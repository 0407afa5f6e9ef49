"""Image resolver for OCI distribution registries.

Resolves version constraints to tags, tags to manifest digests, and fetches
the package layer of an image. Anonymous bearer-token auth is handled
transparently; no retries are attempted.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
import urllib.parse
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..common.logging_utils import Timer, extra_context, is_debug_enabled, redact, safe_url
from ..common.ttl_cache import TTLCache
from ..constants import Constants
from ..dep.models import Dependency
from ..dep.parser import split_reference
from ..errors import ResolutionError, Timeout
from ..marshaler.package import PackageImage
from .versions import pick_version

logger = logging.getLogger(__name__)

_AUTH_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')
_LINK_NEXT_RE = re.compile(r'<([^>]+)>\s*;\s*rel="?next"?')
_MAX_TAG_PAGES = 20

_INDEX_MEDIA_TYPES = {
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
}


def parse_www_authenticate(header: str) -> Tuple[str, Dict[str, str]]:
    """Split a WWW-Authenticate header into (scheme, params)."""
    scheme, _, rest = header.strip().partition(" ")
    return scheme.lower(), dict(_AUTH_PARAM_RE.findall(rest))


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


class Resolver:
    """OCI registry client implementing the image resolver contract."""

    def __init__(
        self,
        registry: Optional[str] = None,
        timeout: Optional[int] = None,
        insecure: Optional[bool] = None,
        tag_cache: Optional[TTLCache] = None,
    ):
        """Initialize the resolver.

        Args:
            registry: Registry host used for references without an explicit host.
            timeout: Total per-request timeout in seconds.
            insecure: Talk plain HTTP instead of HTTPS.
            tag_cache: Cache for tag lists; a private one is created if omitted.
        """
        self._registry = registry or Constants.DEFAULT_REGISTRY
        self._timeout = aiohttp.ClientTimeout(
            total=timeout if timeout is not None else Constants.REQUEST_TIMEOUT
        )
        self._insecure = Constants.INSECURE_REGISTRY if insecure is None else insecure
        self._tags = tag_cache if tag_cache is not None else TTLCache(Constants.TAG_CACHE_TTL_SEC)
        self._tokens: Dict[Tuple[str, str, str], str] = {}
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def registry(self) -> str:
        return self._registry

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"User-Agent": Constants.USER_AGENT},
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "Resolver":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def resolve_tag(self, dep: Dependency) -> str:
        """Return the concrete tag satisfying the dependency's constraints."""
        host, repo = self._split(dep)
        tags = await self._list_tags(host, repo)
        tag, count, err = pick_version(dep.constraints, tags)
        if is_debug_enabled(logger):
            logger.debug(
                "Resolved tag",
                extra=extra_context(
                    event="decision",
                    component="image_resolver",
                    action="resolve_tag",
                    outcome="success" if tag else "no_match",
                    package=dep.package,
                    constraints=dep.constraints,
                    candidate_count=count,
                    tag=tag,
                ),
            )
        if tag is None:
            raise ResolutionError(f"{dep}: {err}", dependency=dep)
        return tag

    async def resolve_digest(self, dep: Dependency) -> str:
        """Return the manifest digest currently tagged for a finalized dependency."""
        host, repo = self._split(dep)
        url = self._url(host, f"{repo}/manifests/{dep.constraints}")
        headers = {"Accept": self._manifest_accept()}
        status, resp_headers, _ = await self._request("HEAD", url, host, repo, headers, read=False)
        self._check(status, url, dep)
        digest = resp_headers.get("docker-content-digest")
        if digest:
            return digest
        # Some registries omit the header on HEAD; hash the manifest instead.
        status, _, body = await self._request("GET", url, host, repo, headers)
        self._check(status, url, dep)
        return sha256_digest(body)

    async def fetch(self, dep: Dependency) -> PackageImage:
        """Fetch the package layer for a finalized dependency."""
        host, repo = self._split(dep)
        url = self._url(host, f"{repo}/manifests/{dep.constraints}")
        headers = {"Accept": self._manifest_accept()}
        status, resp_headers, body = await self._request("GET", url, host, repo, headers)
        self._check(status, url, dep)
        digest = resp_headers.get("docker-content-digest") or sha256_digest(body)
        manifest = self._load_json(body, url, dep)

        if manifest.get("mediaType") in _INDEX_MEDIA_TYPES or "manifests" in manifest:
            entries = manifest.get("manifests") or []
            first = entries[0] if isinstance(entries, list) and entries else None
            if not isinstance(first, dict) or not isinstance(first.get("digest"), str):
                raise ResolutionError(f"{dep}: image index lists no manifests", dependency=dep)
            sub_url = self._url(host, f"{repo}/manifests/{first['digest']}")
            status, _, sub_body = await self._request("GET", sub_url, host, repo, headers)
            self._check(status, sub_url, dep)
            manifest = self._load_json(sub_body, sub_url, dep)

        layer_digest = self._package_layer(manifest, dep)
        blob_url = self._url(host, f"{repo}/blobs/{layer_digest}")
        status, _, layer = await self._request("GET", blob_url, host, repo, {})
        self._check(status, blob_url, dep)
        if layer_digest.startswith("sha256:") and sha256_digest(layer) != layer_digest:
            raise ResolutionError(f"{dep}: layer {layer_digest} failed digest verification", dependency=dep)
        return PackageImage(package=dep.package, tag=dep.constraints, digest=digest, layer=layer)

    def _split(self, dep: Dependency) -> Tuple[str, str]:
        try:
            return split_reference(dep.package, self._registry)
        except ValueError as e:
            raise ResolutionError(str(e), dependency=dep) from e

    def _url(self, host: str, path: str) -> str:
        scheme = "http" if self._insecure else "https"
        return f"{scheme}://{host}/v2/{path}"

    @staticmethod
    def _manifest_accept() -> str:
        return ", ".join(list(Constants.MANIFEST_MEDIA_TYPES) + sorted(_INDEX_MEDIA_TYPES))

    @staticmethod
    def _load_json(body: bytes, url: str, dep: Dependency) -> Dict[str, Any]:
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ResolutionError(f"{dep}: invalid JSON from {safe_url(url)}: {e}", dependency=dep) from e
        if not isinstance(data, dict):
            raise ResolutionError(f"{dep}: unexpected manifest shape from {safe_url(url)}", dependency=dep)
        return data

    @staticmethod
    def _package_layer(manifest: Dict[str, Any], dep: Dependency) -> str:
        """Pick the layer annotated as the package base layer, else the last layer."""
        layers = manifest.get("layers") or []
        if not isinstance(layers, list) or not layers:
            raise ResolutionError(f"{dep}: manifest has no layers", dependency=dep)
        if not all(isinstance(layer, dict) and isinstance(layer.get("digest"), str) for layer in layers):
            raise ResolutionError(f"{dep}: manifest lists a layer without a digest", dependency=dep)
        for layer in layers:
            annotations = layer.get("annotations")
            if (
                isinstance(annotations, dict)
                and annotations.get(Constants.XPKG_LAYER_ANNOTATION) == Constants.XPKG_BASE_LAYER
            ):
                return layer["digest"]
        return layers[-1]["digest"]

    @staticmethod
    def _check(status: int, url: str, dep: Dependency) -> None:
        if status == 404:
            raise ResolutionError(f"{dep}: not found at {safe_url(url)}", dependency=dep)
        if status < 200 or status >= 300:
            raise ResolutionError(f"{dep}: registry returned HTTP {status} for {safe_url(url)}", dependency=dep)

    async def _list_tags(self, host: str, repo: str) -> List[str]:
        """Return all tags of a repository, following pagination links."""
        cache_key = f"tags:{host}/{repo}"
        cached = self._tags.get(cache_key)
        if cached is not None:
            return cached

        tags: List[str] = []
        url: Optional[str] = self._url(host, f"{repo}/tags/list")
        pages = 0
        while url and pages < _MAX_TAG_PAGES:
            pages += 1
            status, headers, body = await self._request(
                "GET", url, host, repo, {"Accept": "application/json"}
            )
            if status == 404:
                raise ResolutionError(f"{host}/{repo}: repository not found")
            if status < 200 or status >= 300:
                raise ResolutionError(f"{host}/{repo}: registry returned HTTP {status} listing tags")
            try:
                data = json.loads(body)
            except (ValueError, UnicodeDecodeError) as e:
                raise ResolutionError(f"{host}/{repo}: invalid tag list: {e}") from e
            page_tags = (data.get("tags") or []) if isinstance(data, dict) else None
            if not isinstance(page_tags, list) or not all(isinstance(t, str) for t in page_tags):
                raise ResolutionError(f"{host}/{repo}: unexpected tag list shape")
            tags.extend(page_tags)
            url = self._next_link(url, headers.get("link", ""))

        if url:
            logger.warning(
                "Tag list for %s/%s truncated after %d pages",
                host,
                repo,
                pages,
                extra=extra_context(
                    event="truncated", component="image_resolver", action="list_tags", outcome="page_limit"
                ),
            )
        self._tags.set(cache_key, tags)
        return tags

    @staticmethod
    def _next_link(current: str, link: str) -> Optional[str]:
        m = _LINK_NEXT_RE.search(link or "")
        if not m:
            return None
        return urllib.parse.urljoin(current, m.group(1))

    async def _request(
        self,
        method: str,
        url: str,
        host: str,
        repo: str,
        headers: Dict[str, str],
        read: bool = True,
    ) -> Tuple[int, Dict[str, str], bytes]:
        """Issue a request, answering one bearer-token challenge if needed."""
        if self._session is None:
            await self.start()
        assert self._session is not None

        token_key = (host, repo, "pull")
        request_headers = dict(headers)
        if token_key in self._tokens:
            request_headers["Authorization"] = f"Bearer {self._tokens[token_key]}"

        status, resp_headers, body = await self._send(method, url, request_headers, read)
        if status == 401 and "Authorization" not in request_headers:
            challenge = resp_headers.get("www-authenticate", "")
            scheme, params = parse_www_authenticate(challenge)
            if scheme == "bearer" and params.get("realm"):
                token = await self._fetch_token(params, repo)
                self._tokens[token_key] = token
                request_headers["Authorization"] = f"Bearer {token}"
                status, resp_headers, body = await self._send(method, url, request_headers, read)
        return status, resp_headers, body

    async def _fetch_token(self, params: Dict[str, str], repo: str) -> str:
        query = {"scope": params.get("scope") or f"repository:{repo}:pull"}
        if params.get("service"):
            query["service"] = params["service"]
        url = params["realm"] + "?" + urllib.parse.urlencode(query)
        status, _, body = await self._send("GET", url, {"Accept": "application/json"}, True)
        if status != 200:
            raise ResolutionError(f"token request to {safe_url(url)} failed with HTTP {status}")
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ResolutionError(f"invalid token response from {safe_url(url)}: {e}") from e
        token = (data.get("token") or data.get("access_token")) if isinstance(data, dict) else None
        if not token:
            raise ResolutionError(f"token response from {safe_url(url)} carried no token")
        return token

    async def _send(
        self, method: str, url: str, headers: Dict[str, str], read: bool
    ) -> Tuple[int, Dict[str, str], bytes]:
        assert self._session is not None
        safe_target = safe_url(url)
        with Timer() as t:
            try:
                async with self._session.request(method, url, headers=headers) as resp:
                    body = await resp.read() if read else b""
                    status = resp.status
                    resp_headers = {k.lower(): v for k, v in resp.headers.items()}
            except asyncio.TimeoutError as e:
                logger.warning(
                    "Registry request timed out",
                    extra=extra_context(
                        event="http_exception",
                        component="image_resolver",
                        action=method,
                        outcome="timeout",
                        target=safe_target,
                    ),
                )
                raise Timeout(f"{method} {safe_target} timed out") from e
            except aiohttp.ClientError as e:
                raise ResolutionError(f"{method} {safe_target} failed: {redact(str(e))}") from e
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response",
                extra=extra_context(
                    event="http_response",
                    component="image_resolver",
                    action=method,
                    status_code=status,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                ),
            )
        return status, resp_headers, body
