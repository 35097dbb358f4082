"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: gunicorn/uvicorn-workers) importe `marketplace.asgi:app`.
- Toute la configuration est centralisée dans marketplace.app.create_app.
"""

from marketplace.app import create_app

app = create_app()
