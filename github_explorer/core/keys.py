"""
Redis key construction utilities.

Centralizes all Redis key construction to maintain consistency across the codebase.
"""


class RedisKeys:
    """Utility class for constructing Redis keys with consistent naming conventions."""

    # Prefixes
    PREFIX = "gh"
    PREFIX_SCHEDULES = "gh_schedules"

    # ============================================================================
    # Pipeline history keys
    # ============================================================================

    @staticmethod
    def pipeline_run(run_id: str) -> str:
        """Key for a pipeline history record (hash)."""
        return f"gh:pipeline_run:{run_id}"

    @staticmethod
    def pipeline_runs_index() -> str:
        """Key for global history index (sorted set by started_at)."""
        return "gh:pipeline_runs:index"

    @staticmethod
    def pipeline_runs_type_index(pipeline_type: str) -> str:
        """Key for per-type history index (sorted set by started_at)."""
        return f"gh:pipeline_runs:type:{pipeline_type}"

    # ============================================================================
    # Schedule keys
    # ============================================================================

    @staticmethod
    def schedule(schedule_id: str) -> str:
        """Key for a schedule hash (covered by the schedules search index)."""
        return f"gh_schedules:{schedule_id}"

    # ============================================================================
    # Entity keys
    # ============================================================================

    @staticmethod
    def entity(entity_type: str, entity_key: str) -> str:
        """Key for a single entity record (JSON string)."""
        return f"gh:entity:{entity_type}:{entity_key}"

    @staticmethod
    def entity_index(entity_type: str) -> str:
        """Key for entity ordering index (sorted set by updated_at)."""
        return f"gh:entity_index:{entity_type}"
