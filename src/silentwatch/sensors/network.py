"""Network sensor: counts and classifies requests fired during a window."""

import time
from typing import Any, Dict, List, Optional

from .base import Sensor

# Requests slower than this are reported as slow
SLOW_REQUEST_MS = 2000
MAX_OBSERVED_URLS = 25
MAX_FAILED_URLS = 5

IGNORED_SCHEMES = ("data:", "blob:")


class NetworkSensor(Sensor):
    name = "network"

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._page = None
        self._reset()

    def _reset(self):
        self._started: Dict[int, float] = {}
        self._urls: List[str] = []
        self._statuses: Dict[int, int] = {}
        self._failed: Dict[int, str] = {}
        self._durations: Dict[int, float] = {}
        self._request_urls: Dict[int, str] = {}
        self._last_document_status: Optional[int] = None

    def _on_request(self, request):
        url = request.url
        if url.startswith(IGNORED_SCHEMES):
            return
        key = id(request)
        self._started[key] = self._clock()
        self._request_urls[key] = url
        self._urls.append(url)

    def _on_response(self, response):
        request = response.request
        key = id(request)
        if key not in self._started:
            return
        self._statuses[key] = response.status
        self._durations[key] = (self._clock() - self._started[key]) * 1000
        if request.resource_type == "document":
            self._last_document_status = response.status

    def _on_request_failed(self, request):
        key = id(request)
        if key not in self._started:
            return
        self._failed[key] = request.failure or "failed"
        self._durations.setdefault(key, (self._clock() - self._started[key]) * 1000)

    def start_window(self, page) -> None:
        self._reset()
        self._page = page
        page.on("request", self._on_request)
        page.on("response", self._on_response)
        page.on("requestfailed", self._on_request_failed)

    def stop_window(self, page) -> Dict[str, Any]:
        page.remove_listener("request", self._on_request)
        page.remove_listener("response", self._on_response)
        page.remove_listener("requestfailed", self._on_request_failed)
        self._page = None
        return self._build_summary()

    def _build_summary(self) -> Dict[str, Any]:
        failures_by_status: Dict[str, int] = {}
        top_failed: List[Dict[str, Any]] = []
        for key, url in self._request_urls.items():
            status = self._statuses.get(key)
            if key in self._failed:
                bucket = "failed"
            elif status is not None and status >= 400:
                bucket = str(status)
            else:
                continue
            failures_by_status[bucket] = failures_by_status.get(bucket, 0) + 1
            if len(top_failed) < MAX_FAILED_URLS:
                top_failed.append({"url": url, "status": status})

        total = len(self._urls)
        return {
            "total_requests": total,
            "failed_requests": sum(failures_by_status.values()),
            "failures_by_status": dict(sorted(failures_by_status.items())),
            "first_request_url": self._urls[0] if self._urls else None,
            "observed_request_urls": self._urls[:MAX_OBSERVED_URLS],
            "slow_requests": sum(1 for d in self._durations.values() if d >= SLOW_REQUEST_MS),
            "top_failed_urls": top_failed,
            "last_document_status": self._last_document_status,
            "has_network_activity": total > 0,
        }

    def empty_summary(self) -> Dict[str, Any]:
        return {
            "available": False,
            "total_requests": 0,
            "failed_requests": 0,
            "failures_by_status": {},
            "first_request_url": None,
            "observed_request_urls": [],
            "slow_requests": 0,
            "top_failed_urls": [],
            "last_document_status": None,
            "has_network_activity": False,
        }
