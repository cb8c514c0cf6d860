"""Core functionality for Facet Jewelry Studio.

The core package holds everything below the HTTP layer:

- **config**: Configuration management using Pydantic Settings
- **tables / db**: SQLAlchemy models and session management
- **storage**: S3-compatible object store for image bytes
- **generation**: Gemini client for image generation and chat
- **prompts**: Prompt compilation for base images and views
- **views**: Multi-angle view generation with per-view outcomes
- **images / chat**: Base-image generation and the design conversation
- **materials**: Reusable prompt fragments referenced with @mentions
- **usage / pricing**: Atomic usage accounting and cost calculation

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with FACET_ in .env files

2. **Persistence Layer** (tables.py, db.py, storage.py):
   - Projects, messages, generated and reference images in SQL
   - Image bytes in the object store, referenced by key

3. **Generation Layer** (generation.py, prompts.py):
   - One client wrapper over the Gemini SDK
   - Prompt text built from project settings and conversation context

4. **Workflows** (views.py, images.py, chat.py):
   - Each workflow charges the project through usage.py

Usage Example
-------------
::

    from facet.core import config
    from facet.core.db import create_session_factory
    from facet.core.generation import GeminiClient
    from facet.core.storage import ImageStore
    from facet.core.views import generate_views

    session = create_session_factory(config.database_url)()
    batch = generate_views(session, ImageStore(config), GeminiClient(config), project_id)
    for view in batch.views:
        print(view.view_type, view.image_url)
"""

from facet.core.config import FacetConfig, config
from facet.core.errors import FacetError, NotFoundError, StorageError, UpstreamError, ValidationError

__all__ = [
    "FacetConfig",
    "config",
    "FacetError",
    "NotFoundError",
    "StorageError",
    "UpstreamError",
    "ValidationError",
]
