"""Recurring Reminder Engine - recurring reminders with scoped deletion.

This package provides both REST API and MCP server interfaces over one
reminder engine.

Features:
- Recurrence rules: once, daily, weekly, monthly, yearly, custom
- Timezone-correct scheduling (calendar math in the reminder's own timezone)
- Scheduler loop with a decoupled, retrying notification dispatcher
- Scoped deletion: a single occurrence, the whole series, or from a date
- Description-based matching for "delete my medicine reminder" requests
- Optimistic versioning of every reminder update

Components:
- config: Application settings
- database: SQLAlchemy models and session management
- schemas: Pydantic validation schemas
- crud: Database CRUD operations
- recurrence: Recurrence calculator
- deletion: Deletion scope resolver
- intent, matcher: Deletion intent heuristic and candidate scoring
- reminder_service: Business operations shared by both interfaces
- background_worker, events, dispatcher: Scheduler loop and notification delivery
- api_server: FastAPI REST API
- mcp_server: MCP server with tools for AI agents

Usage:
    python api_server.py
    python mcp_server.py
    python background_worker.py

    # Or all three
    python main.py
"""

__version__ = "1.0.0"
__author__ = "Mayur"
__description__ = "Recurring reminder engine with scoped deletion and MCP integration"
