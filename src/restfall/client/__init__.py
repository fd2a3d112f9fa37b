"""Request pipeline for restfall.

Provides the :class:`ApiClient` facade and the stages it coordinates:

* :mod:`~restfall.client.builder` -- :class:`RequestSpec` to :class:`ResolvedRequest`.
* :mod:`~restfall.client.transport` -- sending over :mod:`httpx`, upload progress.
* :mod:`~restfall.client.response` -- :class:`ResponseResult` and error normalisation.
* :mod:`~restfall.client.dispatch` -- :class:`RequestTask` and result delivery.

Example::

    from restfall.client import ApiClient, RequestSpec

    with ApiClient.from_host("https://api.example.com", "/v1") as client:
        result = client.execute(RequestSpec("GET", "users"))
"""

from restfall.client.builder import RequestSpec, ResolvedRequest, UploadPayload, resolve
from restfall.client.client import ApiClient
from restfall.client.dispatch import RequestTask
from restfall.client.response import ResponseResult
from restfall.client.transport import ProgressSample, UploadProgress

__all__ = [
    "ApiClient",
    "ProgressSample",
    "RequestSpec",
    "RequestTask",
    "ResolvedRequest",
    "ResponseResult",
    "UploadPayload",
    "UploadProgress",
    "resolve",
]
