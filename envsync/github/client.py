"""GitHub client for deployment environments, variables and secrets.

A thin, synchronous wrapper over the GitHub REST API. One instance is
created per sync run and used as a context manager; it owns a single
``httpx.Client``.

API reference (version 2022-11-28):
- https://docs.github.com/en/rest/deployments/environments
- https://docs.github.com/en/rest/actions/variables
- https://docs.github.com/en/rest/actions/secrets
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from envsync.errors import AuthError, NotFoundError, RemoteAPIError, RemoteError
from envsync.github.crypto import seal_secret
from envsync.models import Environment, EnvironmentEntry
from envsync.settings import DEFAULT_API_URL

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
PER_PAGE = 30


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RemoteError) and exc.retryable


def _quote(segment: str) -> str:
    return quote(segment, safe="")


class GitHubEnvClient:
    """Client over GitHub's environment and Actions variables/secrets APIs.

    Parameters
    ----------
    repository : str
        ``owner/name`` of the target repository.
    token : str
        A token with ``repo`` scope (or fine-grained environments, variables
        and secrets write access). Treated as opaque.
    username : str | None
        Sent as the ``User-Agent`` header, as GitHub asks. Defaults to the
        repository owner.
    transport : httpx.BaseTransport | None
        Injected transport, used by tests.
    """

    def __init__(
        self,
        repository: str,
        token: str,
        username: str | None = None,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_wait: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        owner, sep, name = repository.partition("/")
        if not sep or not owner or not name or "/" in name:
            raise ValueError(f"Repository must be given as owner/name, got '{repository}'")

        self.owner = owner
        self.name = name
        self.username = username or owner
        self.max_retries = max(1, max_retries)
        self.retry_wait = max(0.0, retry_wait)

        self._repository_id: int | None = None
        self._public_keys: dict[str, tuple[str, str]] = {}
        self._http = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "User-Agent": self.username,
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            timeout=timeout,
            transport=transport,
        )
        logger.debug(
            "Initialised GitHubEnvClient for %s/%s (username=%s, token=<token>)",
            owner,
            name,
            self.username,
        )

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.name}"

    # -- lifecycle -----------------------------------------------------------

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> GitHubEnvClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- request plumbing ----------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transient failures with exponential backoff."""
        retrying = Retrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_wait, max=30),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._send, method, path, **kwargs)

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        logger.debug("%s %s", method, path)
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            # A timed-out POST may have been applied; a retry would hit "already exists"
            raise RemoteError(
                f"Request timed out: {method} {path}", url=path, retryable=method != "POST"
            ) from e
        except httpx.TransportError as e:
            raise RemoteError(f"Network error on {method} {path}: {e}", url=path) from e

        if response.status_code >= 400:
            raise _error_for(response)
        return response

    def _paginate(self, path: str, key: str) -> list[dict]:
        items: list[dict] = []
        page = 1
        while True:
            response = self._request("GET", path, params={"per_page": PER_PAGE, "page": page})
            data = _payload(response)
            batch = data.get(key, [])
            if not isinstance(batch, list):
                raise _unexpected(response, f"'{key}' is not a list")
            for item in batch:
                if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                    raise _unexpected(response, f"item in '{key}' has no name")
            items.extend(batch)
            total = data.get("total_count")
            if len(batch) < PER_PAGE or (total is not None and len(items) >= total):
                return items
            page += 1

    # -- repository ----------------------------------------------------------

    def repository_details(self) -> dict:
        """Fetch repository metadata."""
        response = self._request("GET", f"/repos/{_quote(self.owner)}/{_quote(self.name)}")
        return _payload(response)

    @property
    def repository_id(self) -> int:
        """Numeric repository id, fetched once and cached."""
        if self._repository_id is None:
            self._repository_id = self._fetch_repository_id()
        return self._repository_id

    def _fetch_repository_id(self) -> int:
        details = self.repository_details()
        try:
            repository_id = int(details["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteError(
                f"Repository {self.repository} has no usable id in its metadata", retryable=False
            ) from e
        logger.debug("Repository %s has id %s", self.repository, repository_id)
        return repository_id

    def _env_path(self, environment: str) -> str:
        return f"/repositories/{self.repository_id}/environments/{_quote(environment)}"

    # -- environments --------------------------------------------------------

    def list_environments(self) -> list[str]:
        """List the names of all environments in the repository."""
        logger.debug("Listing environments for %s", self.repository)
        environments = self._paginate(
            f"/repos/{_quote(self.owner)}/{_quote(self.name)}/environments",
            "environments",
        )
        return [env["name"] for env in environments]

    def upsert_environment(self, environment: str) -> None:
        """Create an environment, or leave an existing one as it is."""
        logger.debug("Upserting environment %s for %s", environment, self.repository)
        self._request(
            "PUT",
            f"/repos/{_quote(self.owner)}/{_quote(self.name)}/environments/{_quote(environment)}",
        )

    # -- entries -------------------------------------------------------------

    def list_entries(self, environment: str) -> Environment:
        """Return the observed variables and secrets of an environment.

        Secret values are never returned by GitHub; observed secrets carry
        ``value=None``.
        """
        base = self._env_path(environment)
        variables = self._paginate(f"{base}/variables", "variables")
        secrets = self._paginate(f"{base}/secrets", "secrets")
        entries = [
            EnvironmentEntry(name=v["name"].upper(), value=str(v.get("value", "")), is_secret=False)
            for v in variables
        ]
        entries.extend(
            EnvironmentEntry(name=s["name"].upper(), value=None, is_secret=True) for s in secrets
        )
        logger.debug(
            "Environment %s: %d variable(s), %d secret(s)",
            environment,
            len(variables),
            len(secrets),
        )
        return Environment(name=environment, entries=tuple(entries))

    def get_variable(self, environment: str, name: str) -> str | None:
        """Return a variable's value, or None if it does not exist."""
        try:
            response = self._request("GET", f"{self._env_path(environment)}/variables/{_quote(name)}")
        except NotFoundError:
            return None
        value = _payload(response).get("value")
        return None if value is None else str(value)

    def create_entry(self, environment: str, entry: EnvironmentEntry) -> None:
        if entry.is_secret:
            self._put_secret(environment, entry)
            return
        self._request(
            "POST",
            f"{self._env_path(environment)}/variables",
            json={"name": entry.name, "value": entry.value},
        )

    def update_entry(self, environment: str, entry: EnvironmentEntry) -> None:
        if entry.is_secret:
            self._put_secret(environment, entry)
            return
        self._request(
            "PATCH",
            f"{self._env_path(environment)}/variables/{_quote(entry.name)}",
            json={"name": entry.name, "value": entry.value},
        )

    def delete_entry(self, environment: str, name: str, is_secret: bool = False) -> None:
        collection = "secrets" if is_secret else "variables"
        self._request("DELETE", f"{self._env_path(environment)}/{collection}/{_quote(name)}")

    # -- secrets -------------------------------------------------------------

    def secret_public_key(self, environment: str) -> tuple[str, str]:
        """Return ``(key_id, key)`` used to seal secrets for an environment."""
        if environment not in self._public_keys:
            response = self._request("GET", f"{self._env_path(environment)}/secrets/public-key")
            data = _payload(response)
            key_id, key = data.get("key_id"), data.get("key")
            if not isinstance(key_id, str) or not isinstance(key, str):
                raise _unexpected(response, "public key response lacks key_id or key")
            self._public_keys[environment] = (key_id, key)
        return self._public_keys[environment]

    def _put_secret(self, environment: str, entry: EnvironmentEntry) -> None:
        if entry.value is None:
            raise ValueError(f"Secret {entry.name} has no value to write")
        key_id, key = self.secret_public_key(environment)
        self._request(
            "PUT",
            f"{self._env_path(environment)}/secrets/{_quote(entry.name)}",
            json={"encrypted_value": seal_secret(key, entry.value), "key_id": key_id},
        )


def _error_for(response: httpx.Response) -> RemoteAPIError:
    """Map an error response onto the envsync error taxonomy."""
    status = response.status_code
    url = str(response.request.url)
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = str(payload.get("message", ""))
    else:
        message = response.text[:200]
    message = message or response.reason_phrase

    if status == 401:
        return AuthError(message, status_code=status, url=url)
    if status == 403:
        rate_limited = (
            response.headers.get("x-ratelimit-remaining") == "0"
            or "retry-after" in response.headers
            or "rate limit" in message.lower()
        )
        if rate_limited:
            return RemoteError(message, status_code=status, url=url)
        return AuthError(message, status_code=status, url=url)
    if status == 404:
        return NotFoundError(message, status_code=status, url=url)
    if status == 429 or status >= 500:
        return RemoteError(message, status_code=status, url=url)
    return RemoteError(message, status_code=status, url=url, retryable=False)


def _payload(response: httpx.Response) -> dict:
    """Decode a successful response body that must be a JSON object."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        raise _unexpected(response, "body is not a JSON object")
    return data


def _unexpected(response: httpx.Response, detail: str) -> RemoteError:
    return RemoteError(
        f"Unexpected response from {response.request.method} {response.request.url.path}: {detail}",
        status_code=response.status_code,
        url=str(response.request.url),
        retryable=False,
    )
