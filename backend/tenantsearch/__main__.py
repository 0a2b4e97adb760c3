"""Run the API with uvicorn: ``python -m tenantsearch`` or ``tenant-search``."""

from __future__ import annotations

import uvicorn

from tenantsearch.settings import settings


def main() -> None:
	uvicorn.run(
		"tenantsearch.main:app",
		host=settings.http_host,
		port=settings.http_port,
		log_config=None,
		proxy_headers=True,
	)


if __name__ == "__main__":
	main()
