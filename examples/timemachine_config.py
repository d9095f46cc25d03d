"""MCP Time Machine Configuration - Advanced Python Example

Copy to your project root as timemachine_config.py for full extensibility.

Convention:
- CONFIG dict for static configuration (same structure as TOML)
- Functions named hook_* become lifecycle hooks
- Functions named custom_tool_* become MCP tools
"""

import logging

logger = logging.getLogger("timemachine_config")

# =============================================================================
# Static Configuration (same structure as TOML)
# =============================================================================

CONFIG = {
    "project": {
        "name": "notes",
    },
    "store": {
        "dir": ".timemachine/logs",
        "sidecar_logs": False,
        "lock_timeout": 5.0,
    },
    "replay": {
        "checkpoint_interval": 128,
    },
    "watch": {
        "enabled": True,
        "patterns": ["*.md", "*.txt"],
        "ignore": [".git/*", ".timemachine/*", "drafts/*"],
        "poll_interval": 2.0,
    },
    "logging": {
        "level": "INFO",
        "format": "json",
    },
}


# =============================================================================
# Hooks - Called during session operations
# =============================================================================

def hook_post_append(result):
    """Called after a change batch is recorded.

    Args:
        result: AppendResult with the identity, new operations and total
    """
    logger.info("%s now has %d operation(s)", result.identity.path, result.total)


def hook_post_reset(identity, text):
    """Called after a document's history is cleared to a new baseline."""
    logger.info("History of %s reset (%d characters)", identity.path, len(text))


# =============================================================================
# Custom Tools - Exposed as additional MCP tools
# =============================================================================

def custom_tool_word_count_history(machine, params) -> dict:
    """Word count of a document at evenly spaced points in its history."""
    path = params["path"]
    samples = int(params.get("samples", 10))

    total = machine.replay_at(path).total
    step = max(total // samples, 1)
    points = list(range(0, total, step)) + [total]

    return {
        "success": True,
        "total": total,
        "word_counts": {
            str(position): len(machine.replay_at(path, position).text.split())
            for position in points
        },
    }
