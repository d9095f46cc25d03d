"""MCP tool definitions wrapping the time machine session."""

from __future__ import annotations

import logging
from typing import Any

from .engine import (
    DocumentNotText,
    IdentityCollisionError,
    InvalidChangeDescriptor,
    LogStoreUnavailable,
    MalformedLog,
    TimeMachineError,
)
from .session import TimeMachine

logger = logging.getLogger(__name__)

_PATH_PROPERTY = {
    "type": "string",
    "description": "Document path (absolute, or relative to the project root)",
}


def make_tools(machine: TimeMachine) -> dict[str, dict]:
    """Create MCP tool definitions for the time machine.

    Returns:
        Dict mapping tool names to their definitions.
    """

    tools = {}

    # ========== timeline_record ==========
    tools["timeline_record"] = {
        "name": "timeline_record",
        "description": "Record a batch of editor content changes for a document. Changes are applied in the given order.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "changes": {
                    "type": "array",
                    "description": "Content changes against the pre-edit document",
                    "items": {
                        "type": "object",
                        "properties": {
                            "rangeOffset": {"type": "integer", "minimum": 0},
                            "rangeLength": {"type": "integer", "minimum": 0},
                            "text": {"type": "string"},
                        },
                        "required": ["rangeOffset", "rangeLength", "text"],
                    },
                },
                "baseline_text": {
                    "type": "string",
                    "description": "Document text before this batch; seeds the log if it is empty",
                },
            },
            "required": ["path", "changes"],
        },
    }

    # ========== timeline_snapshot ==========
    tools["timeline_snapshot"] = {
        "name": "timeline_snapshot",
        "description": "Record the difference between the latest logged state and the document's current text.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "text": {
                    "type": "string",
                    "description": "Current document text (default: read from disk)",
                },
            },
            "required": ["path"],
        },
    }

    # ========== timeline_replay ==========
    tools["timeline_replay"] = {
        "name": "timeline_replay",
        "description": "Reconstruct a document's text after the first N logged operations (default: all).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "position": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Number of operations to replay",
                },
            },
            "required": ["path"],
        },
    }

    # ========== timeline_history ==========
    tools["timeline_history"] = {
        "name": "timeline_history",
        "description": "List logged operations for a document in append order.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "start": {"type": "integer", "minimum": 0, "description": "First index to list"},
                "limit": {"type": "integer", "minimum": 1, "description": "Maximum entries to return"},
            },
            "required": ["path"],
        },
    }

    # ========== timeline_diff ==========
    tools["timeline_diff"] = {
        "name": "timeline_diff",
        "description": "Unified diff between two points in a document's history.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "from_position": {"type": "integer", "minimum": 0},
                "to_position": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Default: latest",
                },
                "context_lines": {"type": "integer", "default": 3},
            },
            "required": ["path", "from_position"],
        },
    }

    # ========== timeline_reset ==========
    tools["timeline_reset"] = {
        "name": "timeline_reset",
        "description": "Clear a document's history, keeping a single baseline of its current text.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "text": {
                    "type": "string",
                    "description": "Baseline text (default: read from disk)",
                },
            },
            "required": ["path"],
        },
    }

    # ========== timeline_status ==========
    tools["timeline_status"] = {
        "name": "timeline_status",
        "description": "Show where a document's log is stored and how many operations it holds.",
        "inputSchema": {
            "type": "object",
            "properties": {"path": _PATH_PROPERTY},
            "required": ["path"],
        },
    }

    # ========== timeline_documents ==========
    tools["timeline_documents"] = {
        "name": "timeline_documents",
        "description": "List documents that have a recorded history.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    return tools


async def execute_tool(machine: TimeMachine, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Execute a time machine tool and return the result.

    Args:
        machine: TimeMachine session
        name: Tool name
        arguments: Tool arguments

    Returns:
        Result dict with success status and data or error
    """
    try:
        if name == "timeline_record":
            result = machine.on_document_changed(
                arguments["path"],
                arguments["changes"],
                baseline_text=arguments.get("baseline_text", ""),
            )
            return {
                "success": True,
                **result.to_dict(),
                "message": f"Recorded {len(result.operations)} operation(s); {result.total} total",
            }

        elif name == "timeline_snapshot":
            result = machine.record_snapshot(arguments["path"], text=arguments.get("text"))
            return {
                "success": True,
                **result.to_dict(),
                "message": f"Recorded {len(result.operations)} operation(s); {result.total} total",
            }

        elif name == "timeline_replay":
            replayed = machine.replay_at(arguments["path"], arguments.get("position"))
            return {
                "success": True,
                **replayed.to_dict(),
                "message": f"Operation {replayed.position} of {replayed.total}",
            }

        elif name == "timeline_history":
            entries = machine.history(
                arguments["path"],
                start=arguments.get("start", 0),
                limit=arguments.get("limit"),
            )
            return {
                "success": True,
                "count": len(entries),
                "operations": entries,
            }

        elif name == "timeline_diff":
            diff = machine.diff_between(
                arguments["path"],
                from_position=arguments["from_position"],
                to_position=arguments.get("to_position"),
                context_lines=arguments.get("context_lines", 3),
            )
            return {
                "success": True,
                **diff,
            }

        elif name == "timeline_reset":
            total = machine.reset(arguments["path"], text=arguments.get("text"))
            return {
                "success": True,
                "total": total,
                "message": "History cleared to current contents",
            }

        elif name == "timeline_status":
            return {
                "success": True,
                **machine.status(arguments["path"]),
            }

        elif name == "timeline_documents":
            documents = machine.documents()
            return {
                "success": True,
                "count": len(documents),
                "documents": documents,
            }

        else:
            return {
                "success": False,
                "error": f"Unknown tool: {name}",
            }

    except InvalidChangeDescriptor as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_change",
            "suggestion": "Offsets and lengths must be non-negative UTF-16 code unit counts within the document",
        }

    except MalformedLog as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "malformed_log",
            "index": e.index,
            "suggestion": "The log does not replay cleanly; use timeline_reset to start a new baseline",
        }

    except IdentityCollisionError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "identity_collision",
        }

    except DocumentNotText as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "document_not_text",
        }

    except LogStoreUnavailable as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "log_store_unavailable",
            "suggestion": "Check that the log directory is readable and writable, then retry",
        }

    except TimeMachineError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "timemachine_error",
        }

    except (KeyError, ValueError) as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_arguments",
        }

    except Exception as e:
        logger.exception("Tool %s failed", name)
        return {
            "success": False,
            "error": str(e),
            "error_type": "unexpected_error",
        }
