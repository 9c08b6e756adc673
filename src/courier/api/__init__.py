"""FastAPI REST API for Courier.

This module provides the management API for endpoints, events and
deliveries.

Example:
    ```python
    import uvicorn
    from courier.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn courier.api:app --reload
    ```
"""

from .app import app, create_app
from .router import router

__all__ = [
    "app",
    "create_app",
    "router",
]
