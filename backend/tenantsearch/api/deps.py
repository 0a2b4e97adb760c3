"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from fastapi import Request

from tenantsearch.container import SearchBackend


def get_backend(request: Request) -> SearchBackend:
	backend = getattr(request.app.state, "backend", None)
	if backend is None:
		raise RuntimeError("search backend is not initialised")
	return backend
