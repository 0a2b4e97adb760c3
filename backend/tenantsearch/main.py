"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from tenantsearch.api import ops, search
from tenantsearch.api.errors import install_error_handlers
from tenantsearch.container import SearchBackend, close_backend, open_backend
from tenantsearch.obs import init as obs_init


@asynccontextmanager
async def lifespan(app: FastAPI):
	# A backend injected by the caller (tests, embedding) is owned by the caller.
	owned = getattr(app.state, "backend", None) is None
	if owned:
		app.state.backend = await open_backend()
	try:
		yield
	finally:
		if owned:
			await close_backend(app.state.backend)
			app.state.backend = None


def create_app(backend: Optional[SearchBackend] = None) -> FastAPI:
	app = FastAPI(title="Tenant Search", lifespan=lifespan)
	app.state.backend = backend
	install_error_handlers(app)
	obs_init(app)
	app.include_router(search.router)
	app.include_router(ops.router)
	return app


app = create_app()
