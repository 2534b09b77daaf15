"""FastAPI REST API for Courier.

This module provides the management API (subscriptions, inbound mappings,
delivery logs, replay and the producer hook) and the public inbound
webhook endpoint.

Example:
    ```python
    import uvicorn
    from courier.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn --factory courier.api:create_app --reload
    ```
"""

from .app import create_app
from .router import inbound_router, router

__all__ = [
    "create_app",
    "inbound_router",
    "router",
]
